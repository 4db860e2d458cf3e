import logging
from enum import IntEnum

from .dex import Dex
from .helpers import format_code_units, u4le, units_to_bytes, write_files_atomic

log = logging.getLogger(__name__)

DEFAULT_OUTPUT_DEX = "modified_classes.dex"
DEFAULT_OUTPUT_CODE_ITEM = "code_item.bin"

NOP = 0x0000


class HollowStatus(IntEnum):
    OK = 0
    METHOD_NOT_FOUND = 1
    METHOD_HAS_NO_CODE = 2


def pack_code_item_record(code: Dex.CodeItem) -> bytes:
    """Side record of a hollowed method: u32 debug_info_off, u32 insns_size, then the raw code units."""
    return u4le(code.debug_info_off) + u4le(code.insns_size) + units_to_bytes(code.insns)


def hollow_method(dex: Dex, class_name: str, method_name: str, shorty: str,
                  output_dex: str = DEFAULT_OUTPUT_DEX,
                  output_code_item: str = DEFAULT_OUTPUT_CODE_ITEM) -> HollowStatus:
    """Dump the code of one method to ``output_code_item`` and save ``dex`` with that code replaced by NOPs.

    Nothing is written unless the method exists and has code. Both files are written or neither is. On success
    ``dex`` keeps the hollowed code; if building or writing the output fails its code units are restored.
    """
    method_idx = dex.find_method(class_name, method_name, shorty)
    if method_idx is None:
        log.error(f"Method {class_name}.{method_name}(){shorty} not found!")
        return HollowStatus.METHOD_NOT_FOUND

    code = dex.get_code(method_idx)
    if code is None:
        log.warning("Method found, but it has no code (it might be abstract or native).")
        return HollowStatus.METHOD_HAS_NO_CODE

    log.info(f"Found code for method index {method_idx}. Instruction count: {len(code.insns)}")

    record = pack_code_item_record(code)
    log.info(f"Instructions dump: {format_code_units(code.insns)}")

    original = list(code.insns)
    code.insns[:] = [NOP] * len(code.insns)
    try:
        dex.set_code(method_idx, code)
        write_files_atomic([(output_code_item, record), (output_dex, dex.to_bytes())])
    except Exception:
        code.insns[:] = original
        raise

    log.info(f"Successfully wrote {len(record)} bytes to {output_code_item}")
    log.info(f"Modified DEX file saved successfully to {output_dex}!")
    return HollowStatus.OK


def hollow_file(input_dex: str, class_name: str, method_name: str, shorty: str,
                output_dex: str = DEFAULT_OUTPUT_DEX,
                output_code_item: str = DEFAULT_OUTPUT_CODE_ITEM) -> HollowStatus:
    dex = Dex.from_file(input_dex)
    log.info("DEX loaded successfully!")
    return hollow_method(dex, class_name, method_name, shorty, output_dex, output_code_item)
