import pytest

from tests.helpers import ScriptedSource


@pytest.fixture
def scripted_source() -> ScriptedSource:
    return ScriptedSource()
