# utils/sentinels.py
from typing import Any, Self, ClassVar, Optional
from pydantic_core import core_schema
from pydantic import PydanticUserError
from pydantic.json_schema import JsonSchemaValue

class Missing:
	"""Marks an update field that was not provided, as opposed to an explicit ``None``."""
	_instance: ClassVar[Optional["Missing"]] = None

	def __new__(cls) -> Self:
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __repr__(self) -> str:
		return "MISSING"

	def __bool__(self) -> bool:
		return False

	@classmethod
	def __get_pydantic_core_schema__(cls, _source, _handler) -> core_schema.CoreSchema:
		# only the singleton itself validates
		def validate(v):
			if v is cls._instance:
				return v
			raise PydanticUserError('missing_sentinel', 'value is not the Missing sentinel')
		return core_schema.no_info_plain_validator_function(validate)

	@classmethod
	def __get_pydantic_json_schema__(cls, _core_schema: core_schema.CoreSchema, _handler) -> JsonSchemaValue:
		return {"const": "MISSING", "description": "field left unchanged", "x-internal": True}


MISSING = Missing()


def provided(value: Any) -> bool:
	return value is not MISSING


def provided_fields(model: Any) -> dict[str, Any]:
	"""Return the fields of a pydantic update model that were explicitly set."""
	return {
		name: getattr(model, name)
		for name in type(model).model_fields
		if provided(getattr(model, name))
	}
