"""Header and query-parameter names that must match the services byte for byte."""

AUTHORIZATION = "Authorization"
DATE = "Date"
HOST = "Host"
CONTENT_MD5 = "Content-MD5"
CONTENT_TYPE = "Content-Type"
CONTENT_LENGTH = "Content-Length"
CONTENT_RANGE = "Content-Range"
RETRY_AFTER = "Retry-After"

AMZ_PREFIX = "x-amz-"
AMZ_DATE = "x-amz-date"
AMZ_SECURITY_TOKEN = "x-amz-security-token"
AMZ_CONTENT_SHA256 = "x-amz-content-sha256"
AMZ_TREE_HASH = "x-amz-sha256-tree-hash"

MS_PREFIX = "x-ms-"
MS_VERSION = "x-ms-version"

# integrity headers bound to multipart uploads
LINEAR_HASH = AMZ_CONTENT_SHA256
TREE_HASH = AMZ_TREE_HASH

# pre-signed URL query parameters
V2_ACCESS_KEY_PARAM = "AWSAccessKeyId"
V2_EXPIRES_PARAM = "Expires"
V2_SIGNATURE_PARAM = "Signature"

V4_ALGORITHM_PARAM = "X-Amz-Algorithm"
V4_CREDENTIAL_PARAM = "X-Amz-Credential"
V4_DATE_PARAM = "X-Amz-Date"
V4_EXPIRES_PARAM = "X-Amz-Expires"
V4_SIGNED_HEADERS_PARAM = "X-Amz-SignedHeaders"
V4_SIGNATURE_PARAM = "X-Amz-Signature"
V4_SECURITY_TOKEN_PARAM = "X-Amz-Security-Token"

SAS_VERSION_PARAM = "sv"
SAS_EXPIRY_PARAM = "se"
SAS_RESOURCE_PARAM = "sr"
SAS_PERMISSIONS_PARAM = "sp"
SAS_SIGNATURE_PARAM = "sig"
