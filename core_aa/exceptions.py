from dataclasses import dataclass
from enum import Enum


class ValidationExceptionCode(Enum):
    InvalidFields = -32602


@dataclass
class ValidationException(Exception):
    exception_code: ValidationExceptionCode
    message: str


@dataclass
class InvalidIntentException(Exception):
    message: str


@dataclass
class NetworkQueryFailedException(Exception):
    method: str
    message: str


@dataclass
class SignerUnavailableException(Exception):
    message: str


@dataclass
class JsonRpcException(Exception):
    code: int
    message: str
    data: object = None


@dataclass
class AccountNotInitializedException(Exception):
    message: str


@dataclass
class PaymasterNotInitializedException(Exception):
    message: str
