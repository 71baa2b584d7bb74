"""Pydantic models describing catalog payloads and request bodies."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)

WatchStatus = Literal["to-watch", "watching", "watched"]
Role = Literal["Admin", "User"]
Preference = Literal["bookLover", "movieWatcher", "none"]

DEFAULT_STATUS: WatchStatus = "to-watch"


class CatalogItem(BaseModel):
    """A movie or TV show as returned by the catalog provider.

    Only the fields the service relies on are declared; anything else the
    provider sends is kept and returned to the client untouched.
    """

    model_config = ConfigDict(extra="allow")

    id: int
    title: str | None = None
    name: str | None = None
    poster_path: str | None = None
    genre_ids: list[int] = Field(default_factory=list)
    popularity: float | None = None
    vote_average: float | None = None
    vote_count: int | None = None

    def display_title(self) -> str:
        """Movies carry ``title`` while TV shows carry ``name``."""

        return (self.title or self.name or "").strip()

    def to_payload(self) -> dict[str, Any]:
        """Return the item shaped exactly as the provider sent it."""

        return self.model_dump(mode="json", exclude_unset=True)


class Genre(BaseModel):
    """A preferred genre tag stored on the user profile."""

    id: int
    name: str | None = None


class SavedItem(BaseModel):
    """A catalog item reference stored in a user's collection."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    title: str
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("poster_path", "posterPath")
    )
    genres: list[int | str] = Field(default_factory=list)
    status: WatchStatus = DEFAULT_STATUS


class AddMovieRequest(BaseModel):
    id: int
    title: str
    poster_path: str | None = Field(
        default=None, validation_alias=AliasChoices("posterPath", "poster_path")
    )
    genres: list[int | str] = Field(default_factory=list)

    def to_saved_item(self) -> SavedItem:
        return SavedItem(
            id=self.id,
            title=self.title,
            poster_path=self.poster_path,
            genres=list(self.genres),
        )


class UpdateStatusRequest(BaseModel):
    movie_id: int = Field(validation_alias=AliasChoices("movieId", "movie_id"))
    status: WatchStatus


class RemoveMovieRequest(BaseModel):
    movie_id: int = Field(validation_alias=AliasChoices("movieId", "movie_id"))


class SearchByIdRequest(BaseModel):
    id: int


class RegisterRequest(BaseModel):
    """Registration payload; field names follow the web client's casing."""

    first_name: str = Field(
        min_length=1,
        max_length=120,
        validation_alias=AliasChoices("firstName", "first_name"),
    )
    last_name: str = Field(
        min_length=1,
        max_length=120,
        validation_alias=AliasChoices("lastName", "last_name"),
    )
    username: str = Field(min_length=1, max_length=80)
    email: EmailStr
    password: str = Field(min_length=4, max_length=72)
    age: int | None = Field(default=None, ge=0, le=150)
    avatar_url: str | None = Field(
        default=None, validation_alias=AliasChoices("avatarURL", "avatar_url")
    )
    preferences: Preference = "none"
    genres: list[Genre] = Field(default_factory=list)

    @field_validator("first_name", "last_name", "username", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("email", mode="before")
    @classmethod
    def _normalise_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("password")
    @classmethod
    def _fits_bcrypt(cls, value: str) -> str:
        # bcrypt only looks at the first 72 bytes.
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password must be at most 72 bytes long")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def _normalise_email(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class UpdateGenresRequest(BaseModel):
    genres: list[Genre | None] = Field(default_factory=list)


class UserIdentity(BaseModel):
    """The authenticated caller attached to a request."""

    id: int
    username: str
    role: Role = "User"
    genres: list[Genre] = Field(default_factory=list)


class PublicUser(BaseModel):
    """Profile fields that are safe to return to the client."""

    model_config = ConfigDict(from_attributes=True)

    first_name: str = Field(serialization_alias="firstName")
    last_name: str = Field(serialization_alias="lastName")
    username: str
    age: int | None = None
    email: str
    role: Role = "User"
    avatar_url: str | None = Field(default=None, serialization_alias="avatarURL")
    preferences: Preference = "none"
    genres: list[Genre] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
