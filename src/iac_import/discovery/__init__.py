"""Discovery engine, provider registry and file-based discovery inputs."""
