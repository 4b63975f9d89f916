import pytest

from cache.errors import ConfigurationError, MultipleBackendsConfigured, NoBackendConfigured
from plugin.selector import BackendOption, select_one


def options(*values):
    names = ["sftp", "s3", "extra"]
    return [BackendOption(names[i], v) for i, v in enumerate(values)]


def test_single_backend_selected():
    selected = select_one(options("", '{"bucket": "b"}'))

    assert selected.index == 1
    assert selected.name == "s3"
    assert selected.config == '{"bucket": "b"}'


def test_first_slot_selected():
    selected = select_one(options("sftp-blob", None, ""))

    assert selected.index == 0
    assert selected.config == "sftp-blob"


@pytest.mark.parametrize("values", [(), ("",), ("", ""), (None, "")])
def test_no_backend(values):
    with pytest.raises(NoBackendConfigured):
        select_one(options(*values))


def test_multiple_backends():
    with pytest.raises(MultipleBackendsConfigured) as excinfo:
        select_one(options("a", "", "c"))

    assert excinfo.value.names == ("sftp", "extra")
    assert isinstance(excinfo.value, ConfigurationError)
