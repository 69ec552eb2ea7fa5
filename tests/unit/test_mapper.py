from __future__ import annotations

from sqla_fluent import Entity, Mapper, Registry, entity, one_to_one, primary_key

from ..models import Device, Event, Pairing, Ping, Session, Token, User


class TestMapRelations:
    def test_one_to_one_and_grandchild(self) -> None:
        device = Device(Nr=1, UserId=1, DeviceToken="Testt")
        pairing = Pairing(Key=2, KeyTwo=2, UserId=2)
        token = Token(Id=3, UserId=3)

        Mapper().map_relations([device, pairing, token])

        assert device.Pairing is pairing
        assert pairing.Tokens == [token]

    def test_one_to_many(self) -> None:
        device = Device(Nr=1, UserId=1)
        session = Session(Nr=4, UserId=4)

        Mapper().map_relations([device, Pairing(Key=2, KeyTwo=2), Token(Id=3), session])

        assert device.Pairing is not None
        assert device.Pairing.Tokens is not None and len(device.Pairing.Tokens) == 1
        assert device.Sessions == [session]

    def test_existing_collection_is_extended(self) -> None:
        device = Device(Nr=1, UserId=1, Sessions=[Session(Nr=5, UserId=5)])

        Mapper().map_relations([device, Pairing(Key=2, KeyTwo=2), Token(Id=3), Session(Nr=4)])

        assert device.Sessions is not None
        assert [s.Nr for s in device.Sessions] == [5, 4]

    def test_existing_nested_collection_is_extended(self) -> None:
        device = Device(Nr=1, UserId=1, Sessions=[Session(Nr=5, UserId=5)])
        pairing = Pairing(Key=2, KeyTwo=2, UserId=2, Tokens=[Token(Id=6, UserId=6)])

        Mapper().map_relations([device, pairing, Token(Id=3), Session(Nr=4)])

        assert device.Pairing is pairing
        assert pairing.Tokens is not None and [t.Id for t in pairing.Tokens] == [6, 3]
        assert device.Sessions is not None and len(device.Sessions) == 2

    def test_two_slots(self) -> None:
        device = Device(Nr=1)

        Mapper().map_relations([device, Pairing(Key=2, KeyTwo=2)])

        assert device.Pairing is not None

    def test_unrelated_type_is_ignored(self) -> None:
        device = Device(Nr=1)

        Mapper().map_relations([device, Token(Id=2)])

        assert device.Pairing is None
        assert device.Sessions is None

    def test_attaches_to_canonical_instances(self) -> None:
        device = Device(
            Nr=1,
            Sessions=[
                Session(Nr=3, UserId=21, Events=[Event(Id=1, UserId=23, Pings=[Ping(Id=4, UserId=5)])]),
            ],
        )

        Mapper().map_relations([device, Session(Nr=3, UserId=21), Event(Id=1, UserId=23), Ping(Id=6, UserId=7)])

        assert device.Sessions is not None and len(device.Sessions) == 1
        session = device.Sessions[0]
        assert session.Events is not None and len(session.Events) == 1
        event = session.Events[0]
        assert event.Pings is not None and [p.Id for p in event.Pings] == [4, 6]

    def test_absent_key_is_skipped(self) -> None:
        device = Device(Nr=1)

        Mapper().map_relations([device, Pairing(), Session(Nr=0), Session(Nr=None)])

        assert device.Pairing is None
        assert device.Sessions is None

    def test_row_holds_canonical_instances(self) -> None:
        existing = Session(Nr=3)
        device = Device(Nr=1, Sessions=[existing])
        row = [device, Session(Nr=3)]

        Mapper().map_relations(row)

        assert row[1] is existing

    def test_one_to_one_same_key_keeps_instance(self) -> None:
        pairing = Pairing(Key=1, KeyTwo=1)
        device = Device(Nr=1, Pairing=pairing)

        Mapper().map_relations([device, Pairing(Key=1, KeyTwo=1)])

        assert device.Pairing is pairing

    def test_empty_slots(self) -> None:
        device = Device(Nr=1)

        Mapper().map_relations([device, None, Session(Nr=2)])

        assert device.Sessions is not None and len(device.Sessions) == 1

    def test_slot_fills_first_field_of_its_type(self) -> None:
        registry = Registry()

        @entity("people", registry=registry)
        class Person(Entity):
            Id: int | None = primary_key()

        @entity("docs", registry=registry)
        class Doc(Entity):
            Id: int | None = primary_key()
            Owner: Person | None = one_to_one(Person)
            Editor: Person | None = one_to_one(Person)

        doc = Doc(Id=1)
        person = Person(Id=9)

        (merged,) = Mapper().merge([[doc, person]])

        assert merged.Owner is person
        assert merged.Editor is None


class TestMerge:
    def test_roots_deduplicated(self) -> None:
        rows = [
            [User(Id=1), Device(Nr=1, UserId=1)],
            [User(Id=1), Device(Nr=2, UserId=1)],
            [User(Id=2), Device(Nr=3, UserId=2)],
        ]

        users = Mapper().merge(rows)

        assert [u.Id for u in users] == [1, 2]
        assert users[0].Devices is not None and [d.Nr for d in users[0].Devices] == [1, 2]
        assert users[1].Devices is not None and [d.Nr for d in users[1].Devices] == [3]

    def test_root_identity_is_first_seen(self) -> None:
        first = User(Id=1)
        rows = [[first, Device(Nr=1)], [User(Id=1), Device(Nr=2)]]

        assert Mapper().merge(rows)[0] is first

    def test_duplicate_children_collapse(self) -> None:
        rows = [
            [User(Id=1), Device(Nr=1), Device(Nr=1)],
            [User(Id=1), Device(Nr=1), Device(Nr=1)],
        ]

        users = Mapper().merge(rows)

        assert users[0].Devices is not None and len(users[0].Devices) == 1

    def test_outer_join_without_match(self) -> None:
        rows = [[User(Id=3), Device()]]

        users = Mapper().merge(rows)

        assert len(users) == 1
        assert users[0].Devices is None

    def test_grandchildren_across_rows(self) -> None:
        rows = [
            [Device(Nr=1), Session(Nr=10), Event(Id=100)],
            [Device(Nr=1), Session(Nr=10), Event(Id=101)],
            [Device(Nr=1), Session(Nr=11), Event(Id=102)],
        ]

        devices = Mapper().merge(rows)

        assert len(devices) == 1
        sessions = devices[0].Sessions
        assert sessions is not None and [s.Nr for s in sessions] == [10, 11]
        assert sessions[0].Events is not None and [e.Id for e in sessions[0].Events] == [100, 101]
        assert sessions[1].Events is not None and [e.Id for e in sessions[1].Events] == [102]

    def test_cache_cleared_after_merge(self) -> None:
        mapper = Mapper()
        mapper.merge([[User(Id=1), Device(Nr=1)]])

        assert mapper._relation_cache == {}

    def test_empty(self) -> None:
        assert Mapper().merge([]) == []
