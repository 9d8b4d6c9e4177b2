"""Built-in register maps for the supported instrument families."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

FieldSpec = Union[str, Tuple[str, float], None]


def _floats(names: Sequence[str], *, kind: str = "float32_swapped", units: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
    """Consecutive two-word floats starting at offset 0."""

    units = units or {}
    fields = []
    for index, name in enumerate(names):
        entry: Dict[str, Any] = {"name": name, "offset": 2 * index, "kind": kind}
        if name in units:
            entry["unit"] = units[name]
        fields.append(entry)
    return fields


def _words(specs: Sequence[FieldSpec]) -> List[Dict[str, Any]]:
    """One-word fields; a ``(name, divisor)`` pair scales, ``None`` skips a word."""

    fields = []
    for offset, spec in enumerate(specs):
        if spec is None:
            continue
        if isinstance(spec, tuple):
            name, divisor = spec
            fields.append({"name": name, "offset": offset, "kind": "u16", "divisor": divisor})
        else:
            fields.append({"name": spec, "offset": offset, "kind": "u16"})
    return fields


def _at(specs: Sequence[Tuple[Any, ...]], base: int) -> List[Dict[str, Any]]:
    """Fields placed by absolute register address: ``(address, name, kind[, unit])``.

    Kinds are ``F`` (big-endian float), ``U`` (u16) and ``X10`` (u16 / 10).
    """

    fields = []
    for address, name, kind, *unit in specs:
        entry: Dict[str, Any] = {"name": name, "offset": address - base}
        if unit:
            entry["unit"] = unit[0]
        if kind == "F":
            entry["kind"] = "float32_be"
        elif kind == "X10":
            entry.update(kind="u16", divisor=10)
        else:
            entry["kind"] = "u16"
        fields.append(entry)
    return fields


def _gas_commands(span_confirm_value: int, stop_address: int) -> Dict[str, Any]:
    return {
        "zero_calibration_start": {
            "description": "Enter zero calibration.",
            "category": "calibration",
            "writes": [{"address": 0x3E8, "value": 0}],
        },
        "zero_calibration_confirm": {
            "description": "Confirm the zero point.",
            "category": "calibration",
            "writes": [{"address": 0x3E9, "value": 0}],
        },
        "zero_calibration_cancel": {
            "description": "Abort zero calibration.",
            "category": "calibration",
            "writes": [{"address": 0x3EA, "value": 0}],
        },
        "span_calibration_start": {
            "description": "Enter span calibration with the given concentration.",
            "category": "calibration",
            "writes": [{"address": 0x3EB, "from_argument": True}],
            "minimum": 0,
            "maximum": 0xFFFF,
        },
        "span_calibration_confirm": {
            "description": "Confirm the span point.",
            "category": "calibration",
            "writes": [{"address": 0x3EC, "value": span_confirm_value}],
        },
        "span_calibration_cancel": {
            "description": "Abort span calibration.",
            "category": "calibration",
            "writes": [{"address": 0x3ED, "value": 0}],
        },
        "stop_calibration": {
            "description": "Return the analyzer to measurement.",
            "category": "calibration",
            "writes": [{"address": stop_address, "value": 0}],
        },
    }


def _gas_profile(
    description: str,
    floats: Sequence[str],
    float_count: int,
    u16_address: int,
    u16_fields: Sequence[FieldSpec],
    *,
    gas_fields: Sequence[str],
    unit: str,
    span_confirm_value: int = 400,
    stop_address: int = 0x3E8,
    write_protection_s: Optional[float] = 2.0,
) -> Dict[str, Any]:
    return {
        "description": description,
        "concentration_unit": unit,
        "poll": {"initial_delay_s": 0.0, "interval_s": 5.0},
        "segments": [
            {
                "id": "float_params",
                "address": 0,
                "count": float_count,
                "fields": _floats(floats, units={name: unit for name in gas_fields}),
            },
            {"id": "u16_params", "address": u16_address, "count": len(u16_fields), "fields": _words(u16_fields)},
            {"id": "span_calibration", "address": 0x3EB, "count": 1},
            {"id": "calibration_status", "address": 0x3EE, "count": 1},
        ],
        "status_segment": "calibration_status",
        "span_segment": "span_calibration",
        "status_table": {0: "MEASURE", 1: "ZERO_CALIBRATION", 2: "SPAN_CALIBRATION"},
        "write_protection_s": write_protection_s,
        "commands": _gas_commands(span_confirm_value, stop_address),
    }


CO_FLOATS = (
    "co", "measure_volt", "ref_volt", "measure_dark_current", "ref_dark_current",
    "slope", "intercept", "sample_press", "pump_press", "sample_flow",
    "negative_temp_coefficient", "correlation_wheel_temp", "scrubber_temp",
    "negative_temp_coefficient_corr", "correlation_wheel_temp_corr", "scrubber_temp_corr",
    "sample_press_corr", "pump_press_corr", "sample_flow_corr", "host_calc_measure_ref",
)

CO_WORDS: Tuple[FieldSpec, ...] = (
    "voltage_12v", "voltage_15v", "voltage_5v", "voltage_3v3",
    "optical_chamber_relay_status", "scrubber_relay_status", "correlation_wheel_relay_status",
    "sample_cal_relay_status", "auto_zero_value_relay_status", "start_dark_current_test",
    "start_dark_current_param_storage", "fault_code1", "fault_code2",
)

NO2_FLOATS = (
    "no", "no2", "nox", "no_measure_volt", "nox_measure_volt", "sample_press", "sample_temp",
    "sample_flow", "pump_press", "chamber_press", "o3_flow", "no_slope", "no_intercept",
    "nox_slope", "nox_intercept", "sample_press_corr", "pump_press_corr", "chamber_press_corr",
    "sample_temp_corr", "sample_flow_corr", "mo_furnace_temp_corr", "mo_furnace_temp_setting",
    "chamber_temp_setting", "o3_flow_corr", "no_raw_concentration", "nox_raw_concentration",
    "zero_check_volt",
)

NO2_WORDS: Tuple[FieldSpec, ...] = (
    "device_address", "device_status", "pmt_high_volt_setting",
    ("sample_temp_volt", 10), ("sample_press_volt", 10), ("pump_press_volt", 10),
    ("chamber_press_volt", 10), ("case_temp_volt", 10), ("pmt_temp_volt", 10), ("case_temp", 10),
    "mo_furnace_temp", "pmt_temp", "chamber_temp",
    "voltage_12v", "voltage_15v", "voltage_5v", "voltage_3v3",
    "no_nox_switch_valve_status", "sample_cal_valve_status", "auto_zero_value_relay_status",
    "builtin_pump_status", "case_fan_status", "cooling_fan_status", "mo_furnace_status",
    "chamber_status", "alarm_info", "fault_code", "pmt_high_volt_read",
)

O3_FLOATS = (
    "o3", "measure_volt", "ref_volt", "sample_press", "sample_temp", "sample_flow", "pump_press",
    "slope", "intercept", "sample_press_corr", "pump_press_corr", "sample_temp_corr",
    "sample_flow_corr", "led_set_current", "led_current", "raw_concentration",
    "reserve_1", "reserve_2", "reserve_3", "reserve_4",
)

O3_WORDS: Tuple[FieldSpec, ...] = (
    "device_address", "device_status", "uv_amplification",
    ("sample_temp_volt", 10), ("sample_press_volt", 10), ("pump_press_volt", 10),
    ("case_temp_volt", 10), ("case_temp", 10),
    "voltage_12v", "voltage_15v", "voltage_5v", "voltage_3v3",
    "measure_ref_valve_status", "sample_cal_valve_status", "builtin_pump_status",
    "case_fan_status", "alarm_info", "fault_code",
)

SO2_FLOATS = (
    "measure_volt", "sample_press", "chamber_temp", "sample_flow", "pump_press", "sample_temp",
    "xe_latp_driving_volt", "slope", "intercept", "sample_press_corr", "pump_press_corr",
    "chamber_temp_corr", "sample_flow_corr", "chamber_temp_setting",
    "xe_latp_driving_volt_setting", "so2",
)

SO2_WORDS: Tuple[FieldSpec, ...] = (
    "device_address", "device_status", "pmt_high_volt_setting",
    ("chamber_temp_volt", 10), ("sample_press_volt", 10), ("pump_press_volt", 10),
    ("case_temp_volt", 10), ("pmt_temp_volt", 10), ("case_temp", 10),
    "voltage_12v", "voltage_15v", "voltage_5v", "voltage_3v3", "pmt_high_volt_read",
    None, None, None, None, None,
    "sample_cal_valve_status", "auto_zero_value_relay_status", "builtin_pump_status",
    "case_fan_status", "chamber_status", "alarm_info", "fault_code",
)

CALIBRATOR_BLOCK_A = (
    (0x00, "other_gas_concentration", "F", "ppm"), (0x02, "so2_std_gas_concentration", "F", "ppm"),
    (0x04, "no_std_gas_concentration", "F", "ppm"), (0x06, "co_std_gas_concentration", "F", "ppm"),
    (0x1E, "gptno_concentration", "F", "ppm"), (0x20, "gpto3_concentration", "F", "ppb"),
)

# 0x46 holds the gas selection, which does not read back reliably.
CALIBRATOR_BLOCK_B = (
    (0x48, "system_state", "U"), (0x49, "o3_gas_concentration", "F", "ppb"),
)

CALIBRATOR_GAS_SELECT_ADDRESS = 0x46

QC_BLOCK_A = (
    (0, "system_state", "U"),
    (1, "bench_temp", "F"), (3, "bench_humidity", "F"),
    (5, "sample_tube_temp", "F"), (7, "sample_tube_humidity", "F"),
    (9, "sample_tube_flow", "F"), (11, "sample_tube_pressure", "F"),
    (13, "sample_tube_leak", "U"),
    (14, "station_ua", "F"), (16, "station_ub", "F"), (18, "station_uc", "F"),
    (20, "station_ia", "F"), (22, "station_ib", "F"), (24, "station_ic", "F"),
    (26, "station_pa", "F"), (28, "station_pb", "F"), (30, "station_pc", "F"),
    (32, "station_qa", "F"), (34, "station_qb", "F"), (36, "station_qc", "F"),
    (38, "station_pf_a", "F"), (40, "station_pf_b", "F"), (42, "station_pf_c", "F"),
    (44, "voltage_freq", "F"),
    (46, "ac1_power", "U"), (47, "ac1_direction", "U"), (48, "ac1_set_temp", "U"),
    (49, "ac1_mode", "U"), (50, "ac1_speed", "U"), (51, "ac1_cur_temp", "U"),
    (53, "ac2_power", "U"), (54, "ac2_direction", "U"), (55, "ac2_set_temp", "U"),
    (56, "ac2_mode", "U"), (57, "ac2_speed", "U"), (58, "ac2_cur_temp", "U"),
    (60, "gas_cylinder1_pressure", "F"), (62, "gas_cylinder2_pressure", "F"),
    (64, "gas_cylinder3_pressure", "F"),
    (66, "gas_cylinder_alarm_limit", "U"),
    (67, "zero_gas_pressure", "F"),
    (69, "zero_gas_alarm_limit", "U"),
    (70, "co_purifier_temp", "F"),
    (72, "co_cylinder_leak", "U"), (73, "fan_control", "U"), (74, "zero_gas_relay", "U"),
    (75, "calibrator_relay", "U"),
    (76, "calibration_valve_so2", "U"), (77, "calibration_valve_nox", "U"),
    (78, "calibration_valve_o3", "U"), (79, "calibration_valve_co", "U"),
    (80, "light_control", "U"), (81, "infrared_status", "U"),
    (82, "smoke_detector1", "U"), (83, "smoke_detector2", "U"),
    (84, "temp_detector1", "U"), (85, "temp_detector2", "U"),
    (86, "water_leak_detector", "U"), (87, "gas_cylinder_alarm_status", "U"),
    (88, "zero_gas_alarm_status", "U"),
    (89, "ups_input_voltage", "F"), (91, "ups_output_voltage", "F"),
    (93, "ups_load_percent", "U"),
    (94, "ups_input_freq", "F"), (96, "ups_battery_voltage", "F"), (98, "ups_battery_temp", "F"),
    (100, "ups_status", "U"),
    (101, "pm2_5_concentration", "U"), (102, "pm10_concentration", "U"),
    (103, "o3_concentration_qc", "F"),
    (105, "co_concentration_qc", "U"),
    (106, "no2_concentration_qc", "F"), (108, "so2_concentration_qc", "F"),
)

QC_BLOCK_B = (
    (110, "sample_tube_addr", "U"), (111, "sample_tube_sampling_status", "U"),
    (112, "heating_temp", "X10"), (113, "fan_power", "X10"), (114, "heating_belt_power", "X10"),
    # One status word is shared by every film changer.
    (116, "so2_film_changer_status", "U"), (116, "nox_film_changer_status", "U"),
    (116, "co_film_changer_status", "U"), (116, "o3_film_changer_status", "U"),
    (144, "so2_gas_temp", "F"), (146, "nox_gas_temp", "F"),
    (148, "co_gas_temp", "F"), (150, "o3_gas_temp", "F"),
    (223, "vibration", "F"),
    (225, "pm10_std_flow", "F"), (227, "pm10_working_flow", "F"),
    (229, "pm2_5_std_flow", "F"), (231, "pm2_5_working_flow", "F"),
)

SAMPLE_TUBE_WORDS: Tuple[FieldSpec, ...] = (
    ("humidity", 10), ("sample_gas_temperature", 10), "calibration_status", "reserved_3",
    "device_address", ("gas_flow_rate", 10), ("heating_tube_actual_temp", 10),
    ("fan_power", 10), ("heating_belt_power", 10), "reserved_9", ("heating_tube_target_temp", 10),
)


def _per_line(name: str, divisor: Optional[float] = None) -> List[FieldSpec]:
    return [(f"{name}_l{line}", divisor) if divisor else f"{name}_l{line}" for line in range(1, 5)]


POWER_STABILIZER_WORDS: Tuple[FieldSpec, ...] = tuple(
    _per_line("current", 100)
    + _per_line("voltage", 10)
    + _per_line("power", 100)
    + [("temperature", 10), ("humidity", 10)]
    + _per_line("relay")
    + _per_line("temp_alarm_high", 10)
    + _per_line("temp_alarm_low", 10)
    + _per_line("startup_delay")
    + _per_line("temp_trip_high", 10)
    + _per_line("over_temp_protection")
    + ["temp_humidity_comm_status", "electric_param_comm_status", "device_address"]
)


DEFAULT_PROFILES: Dict[str, Dict[str, Any]] = {
    "co": _gas_profile(
        "Carbon monoxide analyzer.",
        CO_FLOATS,
        40,
        60,
        CO_WORDS,
        gas_fields=("co",),
        unit="ppm",
        span_confirm_value=40,
        write_protection_s=None,
    ),
    "no2": _gas_profile(
        "Chemiluminescence NO/NO2/NOx analyzer.",
        NO2_FLOATS,
        54,
        58,
        NO2_WORDS,
        gas_fields=("no", "no2", "nox"),
        unit="ppb",
    ),
    "o3": _gas_profile(
        "UV photometric ozone analyzer.",
        O3_FLOATS,
        40,
        40,
        O3_WORDS,
        gas_fields=("o3",),
        unit="ppb",
        stop_address=0x3EE,
    ),
    "so2": _gas_profile(
        "Pulsed fluorescence SO2 analyzer.",
        SO2_FLOATS,
        32,
        38,
        SO2_WORDS,
        gas_fields=("so2",),
        unit="ppb",
        stop_address=0x3EE,
    ),
    "calibrator": {
        "description": "Multi-gas calibrator (standard gas and GPT generator).",
        "poll": {"initial_delay_s": 0.0, "interval_s": 5.0},
        "segments": [
            {
                "id": "block_a",
                "address": 0x00,
                "count": 38,
                "fields": _at(CALIBRATOR_BLOCK_A, 0x00),
            },
            {
                "id": "block_b",
                "address": 0x46,
                "count": 5,
                "fields": _at(CALIBRATOR_BLOCK_B, 0x46),
            },
        ],
        "commands": {
            "select_gas": {
                "description": "Choose the sample gas to generate (selection code).",
                "category": "calibration",
                "writes": [{"address": CALIBRATOR_GAS_SELECT_ADDRESS, "from_argument": True}],
                "minimum": 0,
                "maximum": 0xFFFF,
            },
        },
    },
    "qc": {
        "description": "Station quality-control unit (environment, power, UPS, gas supply).",
        "poll": {"initial_delay_s": 0.0, "interval_s": 5.0},
        "segments": [
            {"id": "block_a", "address": 0, "count": 110, "fields": _at(QC_BLOCK_A, 0)},
            {"id": "block_b", "address": 110, "count": 123, "fields": _at(QC_BLOCK_B, 110)},
        ],
    },
    "sample_tube": {
        "description": "Heated sample manifold.",
        "poll": {"initial_delay_s": 0.0, "interval_s": 5.0},
        "segments": [
            {"id": "params", "address": 0, "count": 11, "fields": _words(SAMPLE_TUBE_WORDS)},
        ],
        "commands": {
            "set_heating_tube_target_temp": {
                "description": "Heating tube target temperature (degC).",
                "writes": [{"address": 10, "from_argument": True, "multiplier": 10}],
                "minimum": 0,
                "maximum": 6553.5,
            },
            "set_heating_tube_actual_temp": {
                "description": "Heating tube actual temperature (degC).",
                "writes": [{"address": 6, "from_argument": True, "multiplier": 10}],
                "minimum": 0,
                "maximum": 6553.5,
            },
            "set_device_address": {
                "description": "Field-bus address of the manifold controller.",
                "writes": [{"address": 4, "from_argument": True}],
                "minimum": 0,
                "maximum": 255,
            },
            "set_calibration_status": {
                "description": "Manifold calibration flag.",
                "writes": [{"address": 2, "from_argument": True}],
                "minimum": 0,
                "maximum": 0xFFFF,
            },
        },
    },
    "power_stabilizer": {
        "description": "Four-line smart power stabilizer.",
        "poll": {"initial_delay_s": 0.0, "interval_s": 5.0},
        "segments": [
            {"id": "params", "address": 0, "count": 41, "fields": _words(POWER_STABILIZER_WORDS)},
        ],
    },
    "particulate_zero_checker": {
        "description": "Particulate monitor zero-check switch box.",
        "poll": {"interval_s": None},
        "commands": {
            "pm10_zero_check_on": {"category": "zero_check", "writes": [{"address": 0x01, "value": 0}]},
            "pm10_zero_check_off": {"category": "zero_check", "writes": [{"address": 0x02, "value": 0}]},
            "pm2_5_zero_check_on": {"category": "zero_check", "writes": [{"address": 0x03, "value": 0}]},
            "pm2_5_zero_check_off": {"category": "zero_check", "writes": [{"address": 0x04, "value": 0}]},
        },
    },
}
