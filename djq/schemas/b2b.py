from pydantic import BaseModel

from djq.services.partnerships import B2BAction


class B2BActionRequest(BaseModel):
    action: B2BAction
