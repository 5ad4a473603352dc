"""Tests for the ipmitool wrapper and fan actuators with mocked subprocess."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from smart_fan_controller.actuator import IpmiFanActuator, SimulatedActuator
from smart_fan_controller.ipmi import IpmiError, IpmiTool
from smart_fan_controller.protocol import load_protocol

PROTO = load_protocol("dell-idrac")


class TestIpmiTool:
    @patch("smart_fan_controller.ipmi.subprocess.run")
    def test_local_command(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(stdout="ok")
        assert IpmiTool("local").run("sdr", "type", "temperature") == "ok"
        assert mock_run.call_args.args[0] == ["ipmitool", "sdr", "type", "temperature"]

    @patch("smart_fan_controller.ipmi.subprocess.run")
    def test_remote_command_uses_lanplus(self, mock_run: MagicMock) -> None:
        mock_run.return_value = MagicMock(stdout="")
        IpmiTool("10.0.0.5", "root", "calvin").raw(["0x30", "0x30", "0x01", "0x00"])
        assert mock_run.call_args.args[0] == [
            "ipmitool", "-I", "lanplus", "-H", "10.0.0.5", "-U", "root", "-P", "calvin",
            "raw", "0x30", "0x30", "0x01", "0x00",
        ]

    @patch("smart_fan_controller.ipmi.subprocess.run")
    def test_nonzero_exit_raises(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.CalledProcessError(
            1, ["ipmitool"], stderr="Unable to establish IPMI v2 / RMCP+ session",
        )
        with pytest.raises(IpmiError, match="RMCP"):
            IpmiTool("10.0.0.5").sdr_temperatures()

    @patch("smart_fan_controller.ipmi.subprocess.run")
    def test_missing_binary_raises(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = FileNotFoundError("ipmitool")
        with pytest.raises(IpmiError, match="not found"):
            IpmiTool().run("mc", "info")

    @patch("smart_fan_controller.ipmi.subprocess.run")
    def test_timeout_raises(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = subprocess.TimeoutExpired(["ipmitool"], 10)
        with pytest.raises(IpmiError, match="timed out"):
            IpmiTool(timeout=10).run("mc", "info")

    @patch("smart_fan_controller.ipmi.subprocess.run")
    def test_undecodable_output_raises(self, mock_run: MagicMock) -> None:
        mock_run.side_effect = UnicodeDecodeError("utf-8", b"\xff Temp", 0, 1, "invalid start byte")
        with pytest.raises(IpmiError, match="undecodable"):
            IpmiTool().sdr_temperatures()

    def test_ipmi_error_is_os_error(self) -> None:
        assert issubclass(IpmiError, OSError)


class TestIpmiFanActuator:
    def test_enable_manual(self) -> None:
        ipmi = MagicMock()
        actuator = IpmiFanActuator(ipmi, PROTO)
        actuator.enable_manual()
        ipmi.raw.assert_called_once_with(["0x30", "0x30", "0x01", "0x00"])
        assert actuator.manual is True

    def test_restore_auto(self) -> None:
        ipmi = MagicMock()
        actuator = IpmiFanActuator(ipmi, PROTO)
        actuator.enable_manual()
        actuator.restore_auto()
        ipmi.raw.assert_called_with(["0x30", "0x30", "0x01", "0x01"])
        assert actuator.manual is False

    def test_set_fan_speed(self) -> None:
        ipmi = MagicMock()
        IpmiFanActuator(ipmi, PROTO).set_fan_speed(45)
        ipmi.raw.assert_called_once_with(["0x30", "0x30", "0x02", "0xff", "0x2d"])

    def test_failure_propagates(self) -> None:
        ipmi = MagicMock()
        ipmi.raw.side_effect = IpmiError("BMC busy")
        actuator = IpmiFanActuator(ipmi, PROTO)
        with pytest.raises(OSError, match="BMC busy"):
            actuator.enable_manual()
        assert actuator.manual is False


class TestSimulatedActuator:
    def test_records_speed(self) -> None:
        actuator = SimulatedActuator()
        actuator.enable_manual()
        actuator.set_fan_speed(35)
        assert actuator.speed == 35
        assert actuator.manual is True
        actuator.restore_auto()
        assert actuator.manual is False
