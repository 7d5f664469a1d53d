import enum
import typing
import pydantic


enum_serializer = pydantic.PlainSerializer(
    lambda value: value.value if isinstance(value, enum.Enum) else value,
    return_type=str,
)

T = typing.TypeVar("T")
def unique(items: typing.Iterable[T]) -> tuple[T, ...]:
    """De-duplicate, keeping the first occurrence of each item."""
    return tuple(dict.fromkeys(items))
