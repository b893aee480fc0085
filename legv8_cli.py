# legv8_cli.py
import argparse
import logging
import sys
from typing import List, Optional

from legv8_core import DEFAULT_BASE_PC, DEFAULT_MAX_CYCLES, Listing, disassemble, simulate

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="LEGv8 disassembler and instruction-set simulator")
    p.add_argument("-i", "--input", required=True, help="Input file, one 32-bit binary string per line")
    p.add_argument("-o", "--output", required=True, help="Output prefix; the listing goes to <prefix>_dis.txt")
    p.add_argument("-s", "--sim", default=None,
                   help="Trace prefix, written to <prefix>_sim.txt (defaults to the -o prefix)")
    p.add_argument("--base", type=int, default=DEFAULT_BASE_PC, help="Address of the first instruction")
    p.add_argument("--max-cycles", type=int, default=DEFAULT_MAX_CYCLES,
                   help="Stop the simulation after this many executed instructions")
    p.add_argument("-v", "--verbose", action="store_true", help="Log every executed instruction")
    return p


def run(input_path: str, dis_path: str, sim_path: str,
        base_pc: int = DEFAULT_BASE_PC, max_cycles: Optional[int] = DEFAULT_MAX_CYCLES) -> Listing:
    """Write the disassembly listing and the simulation trace for one input file."""
    with open(input_path, 'r') as f:
        lines = f.read().splitlines()

    listing = disassemble(lines, base_pc=base_pc)
    with open(dis_path, 'w') as f:
        for line in listing.lines:
            f.write(line + '\n')

    with open(sim_path, 'w') as f:
        for snapshot in simulate(listing, base_pc=base_pc, max_cycles=max_cycles):
            f.write(snapshot)

    logger.info("Wrote %s and %s (%d listing lines)", dis_path, sim_path, len(listing.lines))
    return listing


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    dis_path = args.output + "_dis.txt"
    sim_path = (args.sim or args.output) + "_sim.txt"
    try:
        run(args.input, dis_path, sim_path, base_pc=args.base, max_cycles=args.max_cycles)
    except OSError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
