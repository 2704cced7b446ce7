import pytest

from sensor_agent.boot_filter import BootNoiseFilter, BootState, is_boot_complete, is_boot_noise

BOOT_BANNER = [
    "ets Jun  8 2016 00:22:57",
    "rst:0x1 (POWERON_RESET),boot:0x13 (SPI_FAST_FLASH_BOOT)",
    "configsip: 0, SPIWP:0xee",
    "clk_drv:0x00,q_drv:0x00,d_drv:0x00,cs0_drv:0x00,hd_drv:0x00,wp_drv:0x00",
    "mode:DIO, clock div:1",
    "load:0x3fff0030,len:1344",
    "ho 0 tail 12 room 4",
    "Brownout detector was triggered",
]


@pytest.mark.parametrize("line", BOOT_BANNER)
def test_boot_noise_patterns(line):
    assert is_boot_noise(line)


@pytest.mark.parametrize(
    "line",
    ["entry 0x400805e4", "I (31) cpu_start: CPU startup complete", "Application startup complete", "Ready to receive data"],
)
def test_boot_complete_patterns(line):
    assert is_boot_complete(line)


def test_banner_lines_are_discarded_while_booting():
    f = BootNoiseFilter()
    assert [f.accept(line) for line in BOOT_BANNER] == [False] * len(BOOT_BANNER)
    assert f.state is BootState.BOOTING
    assert f.discarded == len(BOOT_BANNER)


def test_boot_complete_line_is_dropped_and_opens_the_gate():
    f = BootNoiseFilter()
    assert f.accept("entry 0x400805e4") is False
    assert f.ready
    # Once READY everything passes, even lines that look like boot noise
    assert f.accept("rst:0x1") is True
    assert f.accept("garbage") is True


@pytest.mark.parametrize("line", ["node1:1", "[node1:1 node2:0]", "node7:gun:1"])
def test_sensor_line_opens_the_gate_and_is_forwarded(line):
    f = BootNoiseFilter()
    assert f.accept(line) is True
    assert f.state is BootState.READY


def test_unrecognised_line_while_booting_is_dropped():
    f = BootNoiseFilter()
    assert f.accept("Hello from gateway fw 1.2") is False
    assert f.state is BootState.BOOTING


def test_reset_returns_to_booting():
    f = BootNoiseFilter()
    f.accept("node1:1")
    f.reset()
    assert f.state is BootState.BOOTING
    assert f.accept("rst:0x1") is False
