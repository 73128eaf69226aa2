from flask import request

from crm.errors import ValidationError


def json_body(required=True):
    """The request's JSON object, or {} when the body is optional and absent"""
    data = request.get_json(silent=True)
    if data is None and not required:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('body', 'request body must be a JSON object')
    return data
