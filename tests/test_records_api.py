import asyncio

import pytest

from dwnclient.api import DwnApi
from dwnclient.errors import AuthorizationError, ImmutablePropertyError, OperationError, ValidationError
from dwnclient.keys import KeyManager


def test_write_then_read_hello_world(alice):
    async def run():
        write = await alice.records.write(
            "Hello, world!",
            message={"schema": "foo/bar", "dataFormat": "text/plain"},
        )
        assert write.status.code == 202
        assert write.status.detail == "Accepted"

        read = await alice.records.read({"recordId": write.record.id})
        assert read.status.code == 200
        assert read.record.id == write.record.id
        assert await read.record.data.text() == "Hello, world!"

    asyncio.run(run())


def test_read_round_trip_preserves_descriptor(alice):
    async def run():
        write = await alice.records.write({"hello": "world"}, message={"schema": "greeting"})
        read = await alice.records.read({"recordId": write.record.id})
        return write.record, read.record

    written, read = asyncio.run(run())
    assert read.id == written.id
    assert read.data_cid == written.data_cid
    assert read.data_size == written.data_size
    assert read.to_json() == written.to_json()
    assert read.data_format == "application/json"
    assert asyncio.run(read.data.json()) == {"hello": "world"}


def test_create_is_write(alice):
    response = asyncio.run(alice.records.create(b"\x00\x01"))
    assert response.status.code == 202
    assert response.record.data_format == "application/octet-stream"


def test_read_miss_is_404_without_record(alice):
    response = asyncio.run(alice.records.read({"recordId": "bmissing"}))
    assert response.status.code == 404
    assert response.record is None


def test_query_empty_is_not_an_error(alice):
    response = asyncio.run(alice.records.query({"schema": "nothing"}))
    assert response.status.code == 200
    assert response.records == []


def test_query_filters_and_orders(alice, monkeypatch):
    async def run():
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000000")
        first = await alice.records.write("one", message={"schema": "list"})
        monkeypatch.setenv("SOURCE_DATE_EPOCH", "1700000100")
        second = await alice.records.write("two", message={"schema": "list"})
        await alice.records.write("other", message={"schema": "elsewhere"})

        query = await alice.records.query({"schema": "list"}, date_sort="createdDescending")
        assert query.status.code == 200
        assert [r.id for r in query.records] == [second.record.id, first.record.id]
        assert [await r.data.text() for r in query.records] == ["two", "one"]

    asyncio.run(run())


class TestValidationHappensBeforeDispatch:
    def test_unparseable_data(self, alice, agent):
        with pytest.raises(ValidationError, match="Expected data to be parseable into a JSON object"):
            asyncio.run(alice.records.write(object()))
        assert agent.store.processed == 0

    def test_unknown_message_property(self, alice, agent):
        with pytest.raises(ValidationError, match="Unsupported message properties: colour"):
            asyncio.run(alice.records.write("x", message={"colour": "red"}))
        assert agent.store.processed == 0

    def test_no_signing_key(self, agent):
        stranger = KeyManager().generate()
        with pytest.raises(AuthorizationError):
            asyncio.run(DwnApi(agent, stranger).records.write("x"))
        assert agent.store.processed == 0


class TestStoreOption:
    def test_store_false_returns_a_usable_handle(self, alice, agent):
        async def run():
            write = await alice.records.write("not persisted", store=False)
            assert write.status.code == 202
            assert await write.record.data.text() == "not persisted"
            local = await alice.records.query({"recordId": write.record.id})
            assert local.records == []
            return write.record

        record = asyncio.run(run())
        assert record.stored is False
        assert agent.store.processed == 1

    def test_store_true_is_the_default(self, alice):
        async def run():
            explicit = await alice.records.write("a", store=True, message={"schema": "s"})
            implicit = await alice.records.write("b", message={"schema": "s"})
            return await alice.records.query({"schema": "s"}), explicit, implicit

        query, explicit, implicit = asyncio.run(run())
        assert {r.id for r in query.records} == {explicit.record.id, implicit.record.id}

    def test_send_independence(self, alice):
        async def run():
            write = await alice.records.write("replicate me", store=False)
            sent = await write.record.send(alice.connected_did)
            assert sent.status.code == 202

            remote = await alice.records.query({"recordId": write.record.id}, from_did=alice.connected_did)
            local = await alice.records.query({"recordId": write.record.id})
            return remote, local

        remote, local = asyncio.run(run())
        assert remote.status.code == 200
        assert len(remote.records) == 1
        assert local.status.code == 200
        assert local.records == []


class TestDelete:
    def test_delete_then_query_and_second_delete(self, alice, agent):
        async def run():
            write = await alice.records.write("doomed")
            record = write.record
            deleted = await record.delete()
            assert deleted.status.code == 202
            assert record.is_deleted

            query = await alice.records.query({"recordId": record.id})
            assert query.status.code == 200
            assert query.records == []

            processed = agent.store.processed
            with pytest.raises(OperationError, match="Operation failed"):
                await record.delete()
            assert agent.store.processed == processed

        asyncio.run(run())

    def test_facade_delete(self, alice):
        async def run():
            write = await alice.records.write("doomed")
            first = await alice.records.delete(write.record.id)
            second = await alice.records.delete(write.record.id)
            read = await alice.records.read({"recordId": write.record.id})
            return first, second, read

        first, second, read = asyncio.run(run())
        assert first.status.code == 202
        assert second.status.code == 404
        assert read.status.code == 404


class TestCrossTargetAuthorization:
    def test_query_other_store_is_401(self, alice, bob):
        async def run():
            write = await alice.records.write("alice only")
            await write.record.send(alice.connected_did)
            return await bob.records.query(from_did=alice.connected_did)

        response = asyncio.run(run())
        assert response.status.code == 401
        assert response.records == []

    def test_delete_in_other_store_is_401(self, alice, bob):
        async def run():
            write = await alice.records.write("alice only")
            await write.record.send(alice.connected_did)
            denied = await bob.records.delete(write.record.id, from_did=alice.connected_did)
            still_there = await alice.records.read({"recordId": write.record.id}, from_did=alice.connected_did)
            return denied, still_there

        denied, still_there = asyncio.run(run())
        assert denied.status.code == 401
        assert still_there.status.code == 200

    def test_read_published_record_from_other_store(self, alice, bob):
        async def run():
            write = await alice.records.write("public", message={"published": True})
            await write.record.send(alice.connected_did)
            return await bob.records.read({"recordId": write.record.id}, from_did=alice.connected_did)

        response = asyncio.run(run())
        assert response.status.code == 200
        assert response.record.author == alice.connected_did
        assert response.record.target == alice.connected_did
        assert asyncio.run(response.record.data.text()) == "public"

    def test_local_partitions_are_per_identity(self, alice, bob):
        async def run():
            write = await alice.records.write("mine")
            return await bob.records.read({"recordId": write.record.id})

        assert asyncio.run(run()).status.code == 404


class TestCreateFrom:
    def test_child_inherits_and_links_to_parent(self, alice):
        definition = {"protocol": "https://threads.example", "types": {"post": {}, "reply": {}}}

        async def run():
            await alice.protocols.configure(definition)
            base = await alice.records.write(
                "root",
                message={"protocol": "https://threads.example", "protocolPath": "post", "schema": "post"},
            )
            child = await alice.records.create_from(
                base.record,
                data="a reply",
                message={"protocolPath": "post/reply"},
            )
            return base.record, child

        base, child = asyncio.run(run())
        assert child.status.code == 202
        record = child.record
        assert record.parent_id == base.id
        assert record.context_id == base.context_id == base.id
        assert record.protocol == base.protocol
        assert record.schema == "post"
        assert record.protocol_path == "post/reply"
        assert record.id != base.id

    def test_without_data_reuses_base_payload(self, alice):
        async def run():
            base = await alice.records.write({"n": 1}, message={"schema": "counter"})
            child = await alice.records.create_from(base.record)
            return base.record, child.record

        base, child = asyncio.run(run())
        assert child.data_cid == base.data_cid
        assert child.data_format == "application/json"

    def test_author_override_needs_a_key(self, alice):
        async def run():
            base = await alice.records.write("x")
            await alice.records.create_from(base.record, author=KeyManager().generate())

        with pytest.raises(AuthorizationError):
            asyncio.run(run())


def test_immutable_update_never_reaches_dispatch(alice, agent):
    record = asyncio.run(alice.records.write("v1")).record
    processed = agent.store.processed
    with pytest.raises(ImmutablePropertyError):
        asyncio.run(record.update(dataFormat="application/json"))
    assert agent.store.processed == processed
