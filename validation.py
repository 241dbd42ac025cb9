from marshmallow import Schema, ValidationError, EXCLUDE, fields, pre_load


def validate_request_data(schema_class, data):
    """
    統一的輸入驗證函數

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class()
    try:
        validated_data = schema.load(data)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages


class LooseDate(fields.Date):
    """接受 'YYYY-MM-DD' 或前端送來的完整 ISO datetime,只保留日期部分"""

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, str) and 'T' in value:
            value = value.split('T', 1)[0]
        return super()._deserialize(value, attr, data, **kwargs)


class BlankAwareSchema(Schema):
    """
    處理空值規則的 base schema (建立與部分更新都用)

    兩種欄位規則:
    - KEEP_IF_BLANK: 空字串或 null 視為沒帶,保留舊值 / 使用預設值 (例如 name、status)
    - CLEAR_IF_BLANK: 有帶就覆蓋,空字串轉成 null,代表刻意清空 (例如 description、dueDate)

    沒有出現在 body 的欄位不會出現在 load 的結果裡;不認識的欄位直接忽略
    """

    KEEP_IF_BLANK = ()
    CLEAR_IF_BLANK = ()

    class Meta:
        unknown = EXCLUDE

    @pre_load
    def normalize_blank_fields(self, data, **kwargs):
        if not isinstance(data, dict):
            return data

        data = dict(data)
        for key in self.KEEP_IF_BLANK:
            value = data.get(key)
            if value is None or (isinstance(value, str) and not value.strip()):
                data.pop(key, None)

        for key in self.CLEAR_IF_BLANK:
            if key in data and isinstance(data[key], str) and not data[key].strip():
                data[key] = None

        return data
