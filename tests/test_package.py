from __future__ import annotations

import uavlink


def test_public_names_resolve() -> None:
    assert isinstance(uavlink.__version__, str)
    for name in uavlink.__all__:
        assert getattr(uavlink, name) is not None
