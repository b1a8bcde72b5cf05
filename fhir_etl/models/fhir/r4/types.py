from typing import List

from pydantic import BaseModel, ConfigDict, Field, AliasChoices


class Coding(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    system: str | None = Field(alias="system", default=None)
    code: str | None = Field(alias="code", default=None)
    display: str | None = Field(alias="display", default=None)


class Issue(BaseModel):
    model_config = ConfigDict(extra="allow")

    severity: str | None = Field(alias="severity", default=None)
    code: str | None = Field(alias="code", default=None)
    diagnostics: str | None = Field(alias="diagnostics", default=None)
    details: dict | None = Field(alias="details", default=None)
    expression: List[str] | None = Field(alias="expression", default=None)


class OperationOutcome(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resource_type: str = Field(
        alias="resourceType",
        validation_alias=AliasChoices("resourceType", "resource_type"),
    )
    issue: List[Issue] = Field(default_factory=list)


class Link(BaseModel):
    model_config = ConfigDict(extra="allow")

    relation: str | None = Field(alias="relation", default=None)
    url: str | None = Field(alias="url", default=None)


class Request(BaseModel):
    model_config = ConfigDict(extra="allow")

    method: str | None = Field(alias="method", default=None)
    url: str | None = Field(alias="url", default=None)


class Response(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str | None = Field(alias="status", default=None)
    location: str | None = Field(alias="location", default=None)
    etag: str | None = Field(alias="etag", default=None)
    outcome: dict | None = Field(alias="outcome", default=None)


class Search(BaseModel):
    model_config = ConfigDict(extra="allow")

    mode: str | None = Field(alias="mode", default=None)


class Entry(BaseModel):
    model_config = ConfigDict(extra="allow")

    fullUrl: str | None = Field(alias="fullUrl", default=None)
    request: Request | None = Field(alias="request", default=None)
    response: Response | None = Field(alias="response", default=None)
    search: Search | None = Field(alias="search", default=None)
    resource: dict | None = Field(alias="resource", default=None)


class Bundle(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    resource_type: str = Field(
        alias="resourceType",
        validation_alias=AliasChoices("resourceType", "resource_type"),
    )
    total: int | None = Field(alias="total", default=None)
    type: str | None = Field(alias="type", default=None)
    link: List[Link] | None = Field(alias="link", default=None)
    entry: List[Entry] | None = None

    def next_url(self) -> str | None:
        for link in self.link or []:
            if link.relation == "next" and link.url:
                return link.url
        return None
