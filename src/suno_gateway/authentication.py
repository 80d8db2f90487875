#!/usr/bin/env python3
""" Authentication credentials management """

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .pydantics import JsonFileLoader

# Public API - functions and classes that external scripts should use
__all__ = [
    'SunoAuthentication',
    'AuthenticationModel',
    'AuthenticationLoader',
    'load_authentication'
]


class SunoAuthentication(BaseModel):
    """ Suno browser cookie header copied from a logged-in session """
    cookie: str = Field(description="Full Cookie header value from suno.com, must contain __client")

    @field_validator('cookie')
    @classmethod
    def validate_cookie(cls, v: str) -> str:
        """ Clerk needs the __client cookie to locate the session """
        if "__client=" not in v:
            raise ValueError("cookie must contain the __client token")
        return v.strip()


class AuthenticationModel(BaseModel):
    """ Authentication model with typed fields for known services """

    model_config = {"extra": "allow"}

    suno: Optional[SunoAuthentication] = Field(default=None, description="Suno authentication credentials")


class AuthenticationLoader(JsonFileLoader):
    """ Loader for authentication files """

    def __init__(self, file_path: str):
        """ Initialize the authentication loader """
        super().__init__(file_path, AuthenticationModel)


load_authentication = JsonFileLoader.create_loader_function(AuthenticationLoader, "authentication.json")
