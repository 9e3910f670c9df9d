"""Tests for command builders."""

import struct

import pytest

from ev3_brick_mcp.models.motors import Motor
from ev3_brick_mcp.protocol.commands import (
    DEFAULT_COUNTER,
    MAX_CONTINUE_PAYLOAD,
    Opcode,
    SystemCommand,
    build_battery_level,
    build_battery_voltage,
    build_begin_download,
    build_begin_upload,
    build_continue_download,
    build_create_dir,
    build_delete_file,
    build_device_name,
    build_draw_test,
    build_get_brick_name,
    build_list_files,
    build_mailbox_write,
    build_output_get_count,
    build_output_power,
    build_output_start,
    build_output_step_speed,
    build_output_stop,
    build_output_test,
    build_play_three_tones,
    build_play_tone,
    build_read_raw,
    build_read_si,
    build_set_brick_name,
    build_set_mode,
    build_write_mailbox,
    float_bits,
)
from ev3_brick_mcp.protocol.framing import (
    CommandType,
    GlobalVar,
    LocalVar,
    decode_param,
    parse_frame,
)


def _opcodes(frame):
    """Decode a direct frame body into [(opcode, [params...]), ...].

    Only opcodes listed in ``_ARITY`` are understood.
    """
    body = frame.data[7:]
    offset = 0
    result = []
    while offset < len(body):
        code = body[offset]
        offset += 1
        params = []
        for _ in range(_ARITY[code]):
            value, offset = decode_param(body, offset)
            params.append(value)
        result.append((code, params))
    return result


_ARITY = {
    Opcode.UI_READ: 2,
    Opcode.SOUND: 4,
    Opcode.SOUND_READY: 0,
    Opcode.INPUT_READSI: 5,
    Opcode.OUTPUT_POWER: 3,
    Opcode.OUTPUT_START: 2,
    Opcode.OUTPUT_STOP: 3,
}


def test_every_frame_length_field_is_exact():
    """Each builder's length field equals the bytes after it."""
    frames = [
        build_battery_voltage(),
        build_battery_level(),
        build_play_tone(50, 440, 500),
        build_play_three_tones(),
        build_draw_test(),
        build_device_name(1),
        build_read_si(2, 0),
        build_read_raw(3, 4, 3),
        build_output_step_speed("A", 50, 10, 100, 10),
        build_get_brick_name(),
        build_set_brick_name("robot"),
        build_mailbox_write("EV3", "box", 4, "hi"),
        build_begin_download(10, "../prjs/a.rbf"),
        build_list_files("/home/root/lms2012/", 100),
        build_write_mailbox("box", b"\x00\x00\x60\x40"),
    ]
    for frame in frames:
        reparsed = parse_frame(frame.data)
        assert reparsed is not None, frame
        assert reparsed.length == len(frame.data) - 2


def test_default_counter():
    assert build_battery_voltage().counter == DEFAULT_COUNTER == 42
    assert build_battery_voltage(counter=7).counter == 7


def test_battery_voltage_layout():
    frame = build_battery_voltage()
    assert frame.command_type is CommandType.DIRECT_REPLY
    assert frame.data[5:7] == b"\x04\x00"  # 4 global bytes
    assert _opcodes(frame) == [(Opcode.UI_READ, [1, GlobalVar(0)])]


def test_battery_level_reserves_one_byte():
    frame = build_battery_level()
    assert frame.data[5:7] == b"\x01\x00"
    assert frame.data[7:] == b"\x81\x12\x60"


def test_play_tone_layout():
    frame = build_play_tone(50, 1000, 500)
    assert frame.command_type is CommandType.DIRECT_NO_REPLY
    assert _opcodes(frame) == [(Opcode.SOUND, [1, 50, 1000, 500])]


@pytest.mark.parametrize(
    "volume, frequency, duration",
    [(-1, 440, 100), (101, 440, 100), (50, -1, 100), (50, 20001, 100), (50, 440, -5)],
)
def test_play_tone_range_checks(volume, frequency, duration):
    with pytest.raises(ValueError):
        build_play_tone(volume, frequency, duration)


def test_three_tones_waits_between_tones():
    ops = _opcodes(build_play_three_tones())
    assert [code for code, _ in ops] == [
        Opcode.SOUND, Opcode.SOUND_READY,
    ] * 3
    assert [params[2] for code, params in ops if code == Opcode.SOUND] == [440, 880, 1320]


def test_read_si_uses_zero_based_port():
    """Ports are numbered 1-4 on the brick but 0-3 in the opcode."""
    frame = build_read_si(1, 2)
    assert _opcodes(frame) == [(Opcode.INPUT_READSI, [0, 0, 0, 2, GlobalVar(0)])]
    frame = build_read_si(4, 0)
    assert _opcodes(frame)[0][1][1] == 3


@pytest.mark.parametrize("port", [0, 5, -1])
def test_read_si_rejects_bad_port(port):
    with pytest.raises(ValueError):
        build_read_si(port, 0)


def test_set_mode_reads_into_local():
    frame = build_set_mode(2, 4)
    assert frame.expects_reply
    assert frame.data[5:7] == (4 << 10).to_bytes(2, "little")
    assert _opcodes(frame) == [(Opcode.INPUT_READSI, [0, 1, 0, 4, LocalVar(0)])]


def test_read_raw_targets_consecutive_globals():
    frame = build_read_raw(1, 4, 3)
    assert frame.data[5:7] == (12).to_bytes(2, "little")
    body = frame.data[7:]
    assert body[0] == Opcode.INPUT_DEVICE
    assert body[-3:] == bytes([0x60, 0x64, 0x68])


def test_output_stop_mask_and_brake():
    frame = build_output_stop("BC", "Brake")
    assert _opcodes(frame) == [(Opcode.OUTPUT_STOP, [0, 0x06, 1])]


def test_output_power_and_start():
    assert _opcodes(build_output_power(Motor.A | Motor.D, -75)) == [
        (Opcode.OUTPUT_POWER, [0, 0x09, -75])
    ]
    assert _opcodes(build_output_start("a")) == [(Opcode.OUTPUT_START, [0, 0x01])]


@pytest.mark.parametrize("power", [-101, 101])
def test_output_power_range(power):
    with pytest.raises(ValueError):
        build_output_power("A", power)


def test_output_test_replies_one_byte():
    frame = build_output_test("ABCD")
    assert frame.expects_reply
    assert frame.data[5:7] == b"\x01\x00"
    assert frame.data[7:] == bytes([Opcode.OUTPUT_TEST, 0x00, 0x0F, 0x60])


def test_step_speed_parameters():
    frame = build_output_step_speed("B", -40, 30, 300, 30, "Brake")
    value = frame.data[7:]
    assert value[0] == Opcode.OUTPUT_STEP_SPEED
    params = []
    offset = 1
    while offset < len(value):
        param, offset = decode_param(value, offset)
        params.append(param)
    assert params == [0, 0x02, -40, 30, 300, 30, 1]


def test_get_count_uses_port_index():
    frame = build_output_get_count("C")
    assert frame.data[7:] == bytes([Opcode.OUTPUT_GET_COUNT, 0x00, 0x02, 0x60])
    with pytest.raises(ValueError):
        build_output_get_count("AB")


def test_brick_name_builders():
    get = build_get_brick_name()
    assert get.data[7:] == bytes([Opcode.COM_GET, 13, 12, 0x60])
    assert build_set_brick_name("EV3").data[7:] == bytes([Opcode.COM_SET, 8]) + b"\x84EV3\x00"
    with pytest.raises(ValueError):
        build_set_brick_name("")
    with pytest.raises(ValueError):
        build_set_brick_name("x" * 12)


def test_mailbox_write_direct():
    frame = build_mailbox_write("EV3", "abc", 3, float_bits(1.5))
    assert frame.command_type is CommandType.DIRECT_NO_REPLY
    body = frame.data[7:]
    assert body[0] == Opcode.MAILBOX_WRITE
    params = []
    offset = 1
    while offset < len(body):
        param, offset = decode_param(body, offset)
        params.append(param)
    assert params == ["EV3", 2, "abc", 3, 1, float_bits(1.5)]


def test_float_bits():
    assert float_bits(1.0) == 0x3F800000
    assert float_bits(-2.0) == struct.unpack("<i", struct.pack("<f", -2.0))[0]


def test_begin_download_layout():
    frame = build_begin_download(5, "../prjs/test.txt")
    assert frame.command_type is CommandType.SYSTEM_REPLY
    assert frame.data[5] == SystemCommand.BEGIN_DOWNLOAD
    assert frame.data[6:10] == struct.pack("<I", 5)
    assert frame.data[10:] == b"../prjs/test.txt\x00"


def test_continue_download_layout():
    frame = build_continue_download(3, b"hello", counter=9)
    assert frame.data == struct.pack("<HHBBB", 10, 9, 0x81, 0x93, 3) + b"hello"


def test_continue_download_limit():
    """One frame holds at most MAX_CONTINUE_PAYLOAD file bytes."""
    frame = build_continue_download(1, bytes(MAX_CONTINUE_PAYLOAD))
    assert frame.length == 0xFFFF
    with pytest.raises(ValueError):
        build_continue_download(1, bytes(MAX_CONTINUE_PAYLOAD + 1))


def test_upload_and_listing_layout():
    upload = build_begin_upload(100, "/home/root/lms2012/prjs/x")
    assert upload.data[5:8] == bytes([SystemCommand.BEGIN_UPLOAD]) + struct.pack("<H", 100)
    listing = build_list_files("/home/root/lms2012/", 100)
    assert listing.data[5:8] == bytes([SystemCommand.LIST_FILES]) + struct.pack("<H", 100)
    assert listing.data[8:] == b"/home/root/lms2012/\x00"


def test_dir_and_delete_layout():
    assert build_create_dir("/tmp/a").data[5:] == b"\x9b/tmp/a\x00"
    assert build_delete_file("/tmp/a").data[5:] == b"\x9c/tmp/a\x00"


def test_write_mailbox_layout():
    frame = build_write_mailbox("abc", b"hi\x00")
    assert frame.command_type is CommandType.SYSTEM_NO_REPLY
    assert frame.data[5:] == b"\x9e\x04abc\x00\x03\x00hi\x00"
