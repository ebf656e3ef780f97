# db/schemas/_base.py
from pydantic import BaseModel, ConfigDict

class OrmModel(BaseModel):
    # snapshots are built straight from ORM rows
    model_config = ConfigDict(from_attributes=True, extra="ignore")
