"""
shared/utils/responses.py
The {success, data, error?, pagination?} envelope.
"""


def ok(data=None, *, message: str | None = None, pagination: dict | None = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = pagination
    return body


def fail(error: str) -> dict:
    return {"success": False, "error": error}
