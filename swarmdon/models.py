from pydantic import BaseModel, ConfigDict, Field


class SwarmUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    first_name: str = Field(default="", alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")
    handle: str = ""


class SwarmLocation(BaseModel):
    city: str | None = None
    state: str | None = None
    country: str | None = None


class SwarmVenue(BaseModel):
    id: str
    name: str
    location: SwarmLocation = Field(default_factory=SwarmLocation)


class SwarmCheckin(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str = "checkin"
    private: bool | None = None
    visibility: str | None = None
    shout: str | None = None
    user: SwarmUser | None = None
    venue: SwarmVenue
    with_: list[SwarmUser] = Field(default_factory=list, alias="with")

    @property
    def is_private(self) -> bool:
        return bool(self.private) or self.visibility == "private"


class SwarmCheckinDetail(SwarmCheckin):
    checkin_short_url: str = Field(alias="checkinShortUrl")


class SwarmPush(BaseModel):
    checkin: str
    secret: str


class MastodonCredential(BaseModel):
    base: str
    client_id: str
    client_secret: str
    redirect: str
    token: str


class AppRegistration(BaseModel):
    base: str
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: str


class Account(BaseModel):
    mastodon: MastodonCredential
    swarm_id: str = ""
    swarm_access_token: str = ""
    # Id of the most recently relayed checkin, empty until the first relay.
    watermark: str = ""

    @property
    def is_linked(self) -> bool:
        return bool(self.swarm_id and self.swarm_access_token)
