from elftools.elf.dynamic import DynamicSegment
from elftools.elf.elffile import ELFFile


def get_imported_libraries(f):
    """
    Return the sonames an open ELF file declares as DT_NEEDED, in the order
    they appear in its dynamic segment. Raises ELFError if the file is not
    an ELF object.
    """

    needed = []

    e = ELFFile(f)
    for seg in e.iter_segments():
        if not isinstance(seg, DynamicSegment):
            continue
        for tag in seg.iter_tags():
            if tag.entry.d_tag == "DT_NEEDED":
                needed.append(tag.needed)
    return needed


def get_elf_class(prog):
    """Return 32 or 64 for the ELF binary at path `prog`."""

    with open(prog, "rb") as f:
        return ELFFile(f).elfclass
