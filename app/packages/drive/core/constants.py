"""常量定义：HTTP 状态码与虚拟盘相关的固定取值。"""

HTTP_STATUS_OK = 200
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_NOT_FOUND = 404
HTTP_STATUS_CONFLICT = 409
HTTP_STATUS_UNPROCESSABLE_ENTITY = 422
HTTP_STATUS_INTERNAL_SERVER_ERROR = 500
HTTP_STATUS_BAD_GATEWAY = 502

PATH_SEPARATOR = "/"

# 与列名长度保持一致
MAX_ROOT_LENGTH = 120
MAX_TENANT_LENGTH = 50
MAX_PATH_LENGTH = 1024
MAX_NAME_LENGTH = 255

# 预签名 URL 有效期上限（S3 SigV4 限制为 7 天）
MAX_PRESIGN_EXPIRES = 7 * 24 * 3600

# S3 DeleteObjects 单批最多 1000 个 key
DELETE_BATCH_SIZE = 1000
