from __future__ import annotations

from sqla_fluent import Entity, entity, one_to_many, one_to_one, primary_key


@entity("users")
class User(Entity):
    Id: int | None = primary_key()
    Name: str | None = None
    Active: bool | None = None

    Devices: list[Device] | None = one_to_many("Device")
    Profile: Profile | None = one_to_one("Profile")


@entity("profiles")
class Profile(Entity):
    Id: int | None = primary_key()
    UserId: int | None = None
    Bio: str | None = None


@entity("devices")
class Device(Entity):
    Nr: int | None = primary_key()
    UserId: int | None = None
    DeviceToken: str | None = None

    Notifications: list[Notification] | None = one_to_many("Notification")


@entity("notifications")
class Notification(Entity):
    Id: int | None = primary_key()
    DeviceNr: int | None = None
    Message: str | None = None
    Send: bool | None = None


# Composite key: one row per (user, group).
@entity("memberships")
class Membership(Entity):
    UserId: int | None = primary_key()
    GroupId: int | None = primary_key()
    Role: str | None = None
