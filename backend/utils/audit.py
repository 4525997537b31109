from fastapi import Request
from sqlalchemy.orm import Session

from models.log import Log

# Persist an audit entry in its own commit; call it after the business transaction
def write_log(db: Session, *, user_id, action, resource, status="SUCCESS", ip=None, meta=None):
    entry = Log(user_id=user_id, action=action, resource=resource, status=status, ip=ip, meta=meta or {})
    db.add(entry)
    db.commit()

def client_ip(request: Request = None):
    if request is None or request.client is None:
        return None
    return request.client.host
