"""枚举定义：约束层级条目类型、删除类型与列表排序的可选值。"""

from enum import Enum


class EntryTypeEnum(str, Enum):
    """层级条目类型。

    除 ``folder`` 外均为文件；``multi_file_upload``/``folder_upload`` 仅记录文件的到达方式，
    不影响一致性规则。
    """

    FOLDER = "folder"
    FILE = "file"
    MULTI_FILE_UPLOAD = "multi_file_upload"
    FOLDER_UPLOAD = "folder_upload"


class DeleteKindEnum(str, Enum):
    FILE = "file"
    FOLDER = "folder"


class SortFieldEnum(str, Enum):
    """列表排序字段（对外使用 camelCase 命名）。"""

    NAME = "name"
    TYPE = "type"
    SIZE = "size"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class SortOrderEnum(str, Enum):
    ASC = "asc"
    DESC = "desc"
