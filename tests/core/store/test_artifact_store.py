from __future__ import annotations

import pytest

from lattice_ci.core.exceptions import ArtifactNotFound, StoreIOError
from lattice_ci.core.store.artifact_store import ArtifactStore


def _producer(tmp_path):
    work = tmp_path / "build"
    (work / "dist").mkdir(parents=True)
    (work / "dist" / "app.whl").write_bytes(b"wheel")
    (work / "build.env").write_text("VERSION=2.1.7\nCHANNEL=stable\n", encoding="utf-8")
    return work


def test_publish_and_fetch(tmp_path):
    store = ArtifactStore(tmp_path / "state")
    work = _producer(tmp_path)

    published = store.publish("pl-1", "build", ["dist/"], work, dotenv="build.env", expire_in="1 week")
    assert published.files == {"dist/app.whl": b"wheel"}
    assert published.dotenv == {"VERSION": "2.1.7", "CHANNEL": "stable"}

    fetched = store.fetch("pl-1", "build")
    assert fetched.dotenv == {"VERSION": "2.1.7", "CHANNEL": "stable"}
    assert fetched.expire_in == "1 week"

    consumer = tmp_path / "deploy"
    consumer.mkdir()
    fetched.extract(consumer)
    assert (consumer / "dist" / "app.whl").read_bytes() == b"wheel"


def test_empty_set_is_still_published(tmp_path):
    store = ArtifactStore(tmp_path / "state")
    work = tmp_path / "lint"
    work.mkdir()

    store.publish("pl-1", "lint", [], work)
    assert store.fetch("pl-1", "lint").files == {}


def test_artifacts_are_scoped_to_the_pipeline(tmp_path):
    store = ArtifactStore(tmp_path / "state")
    store.publish("pl-1", "build", ["dist/"], _producer(tmp_path))

    with pytest.raises(ArtifactNotFound):
        store.fetch("pl-2", "build")
    with pytest.raises(ArtifactNotFound):
        store.fetch("pl-1", "other")


def test_missing_dotenv_file_yields_no_variables(tmp_path):
    store = ArtifactStore(tmp_path / "state")
    work = tmp_path / "job"
    work.mkdir()
    assert store.publish("pl-1", "job", [], work, dotenv="missing.env").dotenv == {}


def test_malformed_dotenv_is_a_store_error(tmp_path):
    store = ArtifactStore(tmp_path / "state")
    work = tmp_path / "job"
    work.mkdir()
    (work / "bad.env").write_text("this is not dotenv\n", encoding="utf-8")

    with pytest.raises(StoreIOError):
        store.publish("pl-1", "job", [], work, dotenv="bad.env")


def test_distinct_job_names_never_collide(tmp_path):
    store = ArtifactStore(tmp_path / "state")
    assert store.path_for("pl-1", "build:linux") != store.path_for("pl-1", "build linux")
