"""
Kaleidoscope - Command Line Interface

Usage:
    kaleidoscope input.ks [-o output.ll] [--debug] [--emit-ast] [--verify] [--strict-numbers]
    kaleidoscope - -o -          (read source from stdin, write IR to stdout)
    python -m kaleidoscope input.ks
"""

import sys
import argparse
import os

STDIO = "-"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kaleidoscope",
        description="Lower Kaleidoscope source to LLVM IR",
    )
    parser.add_argument("input", help="Kaleidoscope source file, or '-' for stdin")
    parser.add_argument(
        "-o", "--output",
        help="Where to write the result, or '-' for stdout "
             "(default: input path with .ll or .ast.json)",
    )
    parser.add_argument("--module-name", dest="module_name", default="kaleidoscope",
                        help="Name of the generated LLVM module")
    parser.add_argument("--debug", action="store_true",
                        help="Print compilation phase info to stderr")
    parser.add_argument("--emit-ast", action="store_true", dest="emit_ast",
                        help="Emit the parsed AST as JSON instead of LLVM IR")
    parser.add_argument("--verify", action="store_true",
                        help="Run the LLVM verifier over the generated IR")
    parser.add_argument("--strict-numbers", action="store_true", dest="strict_numbers",
                        help="Reject malformed numerals such as 1.2.3 instead of reading their valid prefix")
    return parser


def default_output_path(input_path: str, emit_ast: bool) -> str:
    if input_path == STDIO:
        return STDIO
    suffix = ".ast.json" if emit_ast else ".ll"
    return os.path.splitext(input_path)[0] + suffix


def main(argv=None):
    args = _build_parser().parse_args(argv)
    output_path = args.output or default_output_path(args.input, args.emit_ast)

    from .compiler import compile_source, CompilationError

    try:
        if args.input == STDIO:
            source = sys.stdin.read()
        else:
            with open(args.input, "r", encoding="utf-8") as f:
                source = f.read()
    except FileNotFoundError:
        print(f"[kaleidoscope] Error: Input file not found: {args.input!r}", file=sys.stderr)
        sys.exit(1)

    try:
        result = compile_source(
            source,
            emit_ast=args.emit_ast,
            debug=args.debug,
            verify=args.verify,
            strict_numbers=args.strict_numbers,
            module_name=args.module_name,
        )
    except CompilationError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)

    if output_path == STDIO:
        sys.stdout.write(result)
        return

    with open(output_path, "w", encoding="utf-8") as f:
        f.write(result)
    print(f"[kaleidoscope] {args.input} -> {output_path}", file=sys.stderr)


if __name__ == "__main__":
    main()
