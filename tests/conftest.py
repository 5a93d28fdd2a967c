"""
Shared test config
"""
# Standard
from unittest import mock

# Third Party
import pytest

# Local
from odlm.test_helpers.helpers import configure_logging, library_config

configure_logging()


@pytest.fixture(autouse=True)
def no_local_kubeconfig():
    """This fixture makes sure the tests run as if KUBECONFIG is not exported in
    the environment, even if it is
    """
    with mock.patch(
        "kubernetes.config.new_client_from_config", side_effect=RuntimeError
    ):
        yield


@pytest.fixture(autouse=True)
def fast_polling():
    """Keep deletion polls and retry backoffs short so that timeouts surface
    quickly
    """
    with library_config(
        delete_poll_interval_seconds=0.01,
        delete_poll_timeout_seconds=0.2,
        retry_backoff_base_seconds=0,
        log_level="off",
    ):
        yield
