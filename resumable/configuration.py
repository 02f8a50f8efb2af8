# Copyright 2019 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""A small typed config system.

Config classes declare class-level Field objects, and the Base constructor
checks an input dictionary (usually parsed from YAML) against them."""

import abc
import re

from typing import Any, Dict, Generic, Optional, Type, TypeVar, cast


class ConfigError(Exception):
  """The parent of every config error.

  Subclasses format themselves as a readable English sentence naming the config
  class and the offending field.
  """

  def __init__(self, class_ref, field_name, field):
    # The config class being parsed, and its name for messages.
    self.class_ref = class_ref
    self.class_name = class_ref.__name__

    # The input key at fault, and its Field declaration.
    self.field_name = field_name
    self.field = field


class UnrecognizedField(ConfigError):
  """The input has a key that the config class does not declare."""

  def __str__(self):
    return '{} has no field named {}'.format(self.class_name, self.field_name)

class WrongType(ConfigError):
  """The input value for a field is not of the declared type."""

  def __str__(self):
    return '{}.{} must be of type {}'.format(
        self.class_name, self.field_name, self.field.get_type_name())

class MissingRequiredField(ConfigError):
  """A required field is absent from the input."""

  def __str__(self):
    return '{}.{} is required, of type {}'.format(
        self.class_name, self.field_name, self.field.get_type_name())

class MalformedField(ConfigError):
  """The input value has the right type, but fails validation."""

  def __init__(self, class_ref, field_name, field, reason):
    super().__init__(class_ref, field_name, field)
    self.reason = reason

  def __str__(self):
    return '{}.{} is invalid: {}'.format(
        self.class_name, self.field_name, self.reason)


class ValidatingType(metaclass=abc.ABCMeta):
  """A pseudo-type for Field() that checks and converts input values.

  Never instantiated.  The config system calls the static validate() method,
  which returns the converted value.  It raises TypeError for input of the wrong
  type, and ValueError for input of the right type that fails validation.
  """

  @staticmethod
  @abc.abstractmethod
  def validate(value: Any) -> Any:
    pass

  @staticmethod
  @abc.abstractmethod
  def name() -> str:
    pass


# Binary multiples accepted by ByteSize.
_BYTE_SIZE_SUFFIXES = {
  '': 1,
  'K': 1 << 10,
  'M': 1 << 20,
  'G': 1 << 30,
}

class ByteSize(ValidatingType, int):
  """A size in bytes.

  Accepts a plain int, or a string like "256K", "8M" or "1G".
  """

  @staticmethod
  def name() -> str:
    return 'size in bytes (like 262144 or "256K")'

  @staticmethod
  def validate(value):
    # bool is a subclass of int, but True is not a size.
    if isinstance(value, bool):
      raise TypeError()

    if isinstance(value, int):
      size = value
    elif isinstance(value, str):
      match = re.match(r'^\s*([0-9]+)\s*([KMG]?)I?B?\s*$', value.upper())
      if not match:
        raise ValueError('not a size: {}'.format(value))
      size = int(match.group(1)) * _BYTE_SIZE_SUFFIXES[match.group(2)]
    else:
      raise TypeError()

    if size <= 0:
      raise ValueError('size must be positive')
    return size


# The value type of a Field.  A Field(float) is a Field[float], and its cast()
# returns a float as far as type checkers are concerned.
FieldType = TypeVar('FieldType')

class Field(Generic[FieldType]):
  """Declares one field of a config class."""

  def __init__(self,
               type: Optional[Type[FieldType]],
               required: bool = False,
               default: Optional[FieldType] = None) -> None:
    """
    Args:
        type: What input values are checked against.  A plain type, a Base
            subclass for a nested config, or a ValidatingType.
        required: If true, leaving the field out of the input is an error.
        default: The value used when the field is left out.
    """
    self.type: Optional[Type] = type
    self.required = required
    self.default = default

  def get_type_name(self) -> str:
    return Field.get_type_name_static(self.type)

  def cast(self) -> FieldType:
    """Type the declaration as the value it becomes on instances.

    Base.__init__ replaces each class-level Field with a plain value on the
    instance.  Declaring `x = Field(int).cast()` lets type checkers see an int.
    """
    return cast(FieldType, self)

  @staticmethod
  def get_type_name_static(type: Optional[Type]) -> str:
    """A name for |type| fit for error messages."""
    if type is None:
      # Undeclared fields have no type.
      return 'None'
    if type is str:
      return 'string'
    if issubclass(type, ValidatingType):
      return type.name()
    return type.__name__


class Base(object):
  """The parent of every config class.

  Subclasses only declare Field objects as class attributes.  The constructor
  rejects unknown keys and missing required ones, checks and converts each
  value, and fills in defaults.
  """

  @classmethod
  def _declared_fields(cls) -> Dict[str, Field]:
    return {
      name: value for name, value in cls.__dict__.items()
      if isinstance(value, Field)
    }

  def __init__(self, dictionary: Dict[str, Any]) -> None:
    fields = self._declared_fields()

    for key, value in dictionary.items():
      if key not in fields:
        raise UnrecognizedField(self.__class__, key, Field(None))
      setattr(self, key, self._check_and_convert_type(fields[key], key, value))

    for key, field in fields.items():
      if key in dictionary:
        continue
      if field.required:
        raise MissingRequiredField(self.__class__, key, field)

      # A nested config left out of the input gets its own defaults.
      if (field.default is None and field.type is not None and
          issubclass(field.type, Base)):
        setattr(self, key, field.type({}))
      else:
        setattr(self, key, field.default)

  def __eq__(self, other: Any) -> bool:
    if type(other) is not type(self):
      return NotImplemented
    return vars(self) == vars(other)

  def _check_and_convert_type(self,
                              field: Field,
                              key: str,
                              value: Any) -> Any:
    """Return |value| converted to the type of |field|.

    Conversion is strict.  YAML already produced typed values, and coercing,
    say, the string "False" to a bool would hide mistakes.
    """
    field_type = field.type
    assert field_type is not None, 'Field {} has no type'.format(key)

    def wrong_type() -> WrongType:
      return WrongType(self.__class__, key, field)

    if issubclass(field_type, Base):
      # Nested configs arrive as mappings and validate themselves.
      if not isinstance(value, dict):
        raise wrong_type()
      return field_type(value)

    # ByteSize is also an int, so validating types come before plain ones.
    if issubclass(field_type, ValidatingType):
      try:
        return field_type.validate(value)
      except TypeError:
        raise wrong_type() from None
      except ValueError as e:
        raise MalformedField(self.__class__, key, field, str(e)) from None

    # bool is a subclass of int, but never a number here.  Floats also accept
    # ints.
    if field_type in (int, float) and isinstance(value, bool):
      raise wrong_type()
    if field_type is float:
      if not isinstance(value, (float, int)):
        raise wrong_type()
      return float(value)

    # YAML turns unquoted scalars like 7 or yes into other types.
    if field_type is str:
      if not isinstance(value, (bool, float, int, str)):
        raise wrong_type()
      return str(value)

    if not isinstance(value, field_type):
      raise wrong_type()
    return value
