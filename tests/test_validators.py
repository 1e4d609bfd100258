from unittest.mock import MagicMock, patch

import pytest

from hypr_arch import validators
from hypr_arch.executors.disk import DiskManager
from hypr_arch.utils.executor import Executor

# ======= Execute with: pytest tests/test_validators.py ========

GIB = 1024 ** 3


@pytest.fixture
def zoneinfo(tmp_path):
    """A tiny zone database with Europe/London and UTC."""
    (tmp_path / "Europe").mkdir()
    (tmp_path / "Europe" / "London").write_bytes(b"TZif")
    (tmp_path / "UTC").write_bytes(b"TZif")
    return tmp_path


@pytest.fixture
def mock_disks():
    return MagicMock(spec=DiskManager)


# --- timezone ---

def test_timezone_accepted_when_zone_file_exists(zoneinfo):
    assert validators.validate_timezone("Europe/London", str(zoneinfo)) is None
    assert validators.validate_timezone("UTC", str(zoneinfo)) is None


def test_timezone_rejected_when_zone_file_missing(zoneinfo):
    problem = validators.validate_timezone("Mars/Base", str(zoneinfo))
    assert problem == f"Invalid timezone 'Mars/Base'. Try: ls {zoneinfo}/ | less"


@pytest.mark.parametrize("value", ["", "/etc/passwd", "../etc/passwd", "Europe/../../etc"])
def test_timezone_rejects_empty_and_path_tricks(zoneinfo, value):
    assert validators.validate_timezone(value, str(zoneinfo)) is not None


def test_timezone_directory_is_not_a_zone(zoneinfo):
    assert validators.validate_timezone("Europe", str(zoneinfo)) is not None


# --- locale ---

@pytest.mark.parametrize("value", ["en_GB.UTF-8", "en_US.UTF-8", "de_DE.UTF-8"])
def test_locale_valid(value):
    assert validators.validate_locale(value) is None


@pytest.mark.parametrize("value", ["en_GB", "en_gb.UTF-8", "EN_GB.UTF-8", "en_GB.utf8", "en_GB.UTF-8 ", "", "eng_GB.UTF-8"])
def test_locale_invalid(value):
    assert "Invalid locale" in validators.validate_locale(value)


# --- keymap ---

def test_keymap_loaded_with_loadkeys():
    executor = MagicMock(spec=Executor)
    executor.dry_run = False
    executor.execute_command.return_value = (0, "", "")

    assert validators.validate_keymap("uk", executor) is None
    executor.execute_command.assert_called_once_with(["loadkeys", "uk"], check=False)


def test_keymap_only_parsed_in_dry_run():
    executor = MagicMock(spec=Executor)
    executor.dry_run = True
    executor.execute_command.return_value = (0, "", "")

    validators.validate_keymap("de", executor)
    executor.execute_command.assert_called_once_with(["loadkeys", "--parse", "de"], check=False)


def test_keymap_rejected_when_loadkeys_fails():
    executor = MagicMock(spec=Executor)
    executor.dry_run = False
    executor.execute_command.return_value = (1, "", "cannot open file xx")

    assert "Invalid keymap 'xx'" in validators.validate_keymap("xx", executor)


def test_keymap_with_whitespace_never_reaches_loadkeys():
    executor = MagicMock(spec=Executor)
    assert validators.validate_keymap("us; reboot", executor) is not None
    executor.execute_command.assert_not_called()


# --- hostname / username ---

@pytest.mark.parametrize("value,ok", [
    ("archbook", True), ("Arch-Book-2", True), ("", False), ("my host", False), ("host.local", False),
])
def test_hostname(value, ok):
    assert (validators.validate_hostname(value) is None) == ok


@pytest.mark.parametrize("value,ok", [
    ("alice", True), ("_svc", True), ("bob-2", True), ("Alice", False), ("1alice", False), ("", False),
])
def test_username(value, ok):
    assert (validators.validate_username(value) is None) == ok


def test_username_reserved():
    assert "reserved" in validators.validate_username("greeter")
    assert "reserved" in validators.validate_username("root")


# --- password ---

def test_password_mismatch_reported_first():
    assert validators.validate_password("abc", "abd") == "Passwords don't match"


def test_password_too_short():
    assert validators.validate_password("12345", "12345") == "Password too short (min 6 characters)"


def test_password_accepted():
    assert validators.validate_password("123456", "123456") is None


# --- literal confirmations ---

@pytest.mark.parametrize("value", ["yes", "y", "", "YES ", "Yes"])
def test_literal_yes_is_case_sensitive(value):
    assert validators.validate_literal(value, "YES") == "Type 'YES' exactly"


def test_literal_yes_accepted():
    assert validators.validate_literal("YES", "YES") is None


# --- disk ---

@patch("hypr_arch.validators.Path.is_block_device", return_value=True)
def test_disk_accepted_at_32_gib(_, mock_disks):
    mock_disks.device_size_bytes.return_value = 32 * GIB
    assert validators.validate_disk("/dev/sda", mock_disks, min_gib=32) is None


@patch("hypr_arch.validators.Path.is_block_device", return_value=True)
def test_disk_too_small_reports_measured_size(_, mock_disks):
    mock_disks.device_size_bytes.return_value = 16 * GIB
    assert validators.validate_disk("/dev/sdb", mock_disks, min_gib=32) == "Disk too small (16 GiB, need 32 GiB+)"


@patch("hypr_arch.validators.Path.is_block_device", return_value=True)
def test_disk_size_is_floored(_, mock_disks):
    mock_disks.device_size_bytes.return_value = 32 * GIB - 1
    assert "31 GiB" in validators.validate_disk("/dev/sda", mock_disks, min_gib=32)


@patch("hypr_arch.validators.Path.is_block_device", return_value=False)
def test_disk_must_be_block_device(_, mock_disks):
    assert validators.validate_disk("/dev/nope", mock_disks) == "Disk not found: /dev/nope is not a block device"
    mock_disks.device_size_bytes.assert_not_called()


@patch("hypr_arch.validators.Path.is_block_device", return_value=True)
def test_disk_size_unreadable(_, mock_disks):
    mock_disks.device_size_bytes.return_value = None
    assert "Could not read the size" in validators.validate_disk("/dev/sda", mock_disks)


@patch("hypr_arch.validators.Path.is_block_device", return_value=True)
@pytest.mark.parametrize("path", ["//dev/sda", "sda", "dev/sda", "/mnt/dev/sda"])
def test_disk_must_be_under_dev(_, mock_disks, path):
    mock_disks.device_size_bytes.return_value = 64 * GIB
    assert validators.validate_disk(path, mock_disks) == f"Disk must be a /dev path (e.g. /dev/sda), got '{path}'"


def test_timezone_accepts_any_regular_file(zoneinfo):
    (zoneinfo / "zone.tab").write_text("# country codes\n")
    assert validators.validate_timezone("zone.tab", str(zoneinfo)) is None
