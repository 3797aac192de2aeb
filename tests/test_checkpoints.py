from orderflow.core.config import Settings
from orderflow.services.checkpoints import (
    FileCheckpointStore,
    MemoryCheckpointStore,
    create_checkpoint_store,
)


def test_file_checkpoint_survives_new_instance(tmp_path):
    path = tmp_path / "state" / "feed.json"
    FileCheckpointStore(str(path)).save("worker", 17)

    assert path.exists()
    assert FileCheckpointStore(str(path)).load("worker") == 17


def test_consumers_are_tracked_separately(tmp_path):
    store = FileCheckpointStore(str(tmp_path / "feed.json"))
    store.save("a", 3)
    store.save("b", 9)
    store.save("a", 5)

    assert store.load("a") == 5
    assert store.load("b") == 9
    assert store.load("c") == 0


def test_corrupt_file_starts_from_zero(tmp_path):
    path = tmp_path / "feed.json"
    path.write_text("{not json", encoding="utf-8")

    store = FileCheckpointStore(str(path))
    assert store.load("worker") == 0
    store.save("worker", 4)
    assert store.load("worker") == 4


def test_factory_uses_path_when_configured(tmp_path):
    settings = Settings(_env_file=None, store_backend="sql", feed_checkpoint_path=None)
    assert isinstance(create_checkpoint_store(settings), MemoryCheckpointStore)

    store = create_checkpoint_store(settings, path=str(tmp_path / "feed.json"))
    assert isinstance(store, FileCheckpointStore)


def test_memory_order_store_never_gets_a_file_checkpoint(tmp_path):
    path = tmp_path / "feed.json"
    settings = Settings(_env_file=None, env_mode="development", feed_checkpoint_path=str(path))

    store = create_checkpoint_store(settings)

    assert isinstance(store, MemoryCheckpointStore)
    store.save("worker", 6)
    assert not path.exists()
