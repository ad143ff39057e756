"""Payload builders shared by the test modules."""

TARGET_URI = "mongodb://localhost:27017"


def index_request(collection="users", spec=None, name="ix_email", change_id=None, **options):
    payload = {
        "target": {"uri": TARGET_URI, "database": "app"},
        "operation": {
            "type": "createIndex",
            "collection": collection,
            "spec": spec or {"email": 1},
            "options": {"name": name, **options} if name else options or None,
        },
    }
    if change_id:
        payload["changeId"] = change_id
    return payload


def collection_request(collection="events", change_id=None, options=None):
    payload = {
        "target": {"uri": TARGET_URI, "database": "app"},
        "operation": {"type": "createCollection", "collection": collection},
    }
    if options is not None:
        payload["operation"]["options"] = options
    if change_id:
        payload["changeId"] = change_id
    return payload
