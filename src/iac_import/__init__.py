"""iac-import - Adopt existing cloud resources into OpenTofu/Terraform state."""

import logging
import warnings

__version__ = "0.1.0"
__author__ = "iac-import maintainers"
__license__ = "Apache-2.0"

# Cloud SDKs are chatty at INFO; keep them out of the import progress output
logging.getLogger("boto3").setLevel(logging.WARNING)
logging.getLogger("botocore").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)
logging.getLogger("urllib3.connectionpool").setLevel(logging.ERROR)
logging.getLogger("azure").setLevel(logging.WARNING)
logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.ERROR)
logging.getLogger("azure.identity").setLevel(logging.WARNING)
logging.getLogger("google").setLevel(logging.WARNING)
logging.getLogger("google.auth").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

warnings.filterwarnings("ignore", module="botocore")
warnings.filterwarnings("ignore", category=DeprecationWarning, module="google")
