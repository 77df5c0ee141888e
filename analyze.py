import argparse
import os
import subprocess
import sys

# --- Configuration ---
TOOLS_DIR = os.path.join(os.path.dirname(__file__), 'tools')
OATDUMP = os.path.join(TOOLS_DIR, 'oatdump.py')


def run_oatdump(options):
    command = [sys.executable, OATDUMP] + options
    subprocess.run(command, check=True)


def analyze_oat(file_path, host_prefix=None, output=None):
    """Calls oatdump on a compiled-code archive."""
    if not os.path.exists(file_path):
        print(f"Error: oat file not found at '{file_path}'")
        sys.exit(1)

    print(f"--- Dumping oat file: {file_path} ---")
    options = [f'--oat-file={file_path}']
    if host_prefix:
        options.append(f'--host-prefix={host_prefix}')
    if output:
        options.append(f'--output={output}')
    run_oatdump(options)


def analyze_image(file_path, boot_image=None, host_prefix=None, output=None):
    """Calls oatdump on a heap snapshot."""
    if not os.path.exists(file_path):
        print(f"Error: image file not found at '{file_path}'")
        sys.exit(1)

    print(f"--- Dumping image file: {file_path} ---")
    options = [f'--image={file_path}']
    if boot_image:
        options.append(f'--boot-image={boot_image}')
    if host_prefix:
        options.append(f'--host-prefix={host_prefix}')
    if output:
        options.append(f'--output={output}')
    run_oatdump(options)


def main():
    """Main function to parse arguments and dispatch commands."""
    parser = argparse.ArgumentParser(
        description="A unified script for dumping ART oat and image files.",
        epilog="Examples:\n"
               "  python3 analyze.py oat out/target/product/generic/system/framework/boot.oat\n"
               "  python3 analyze.py image out/target/product/generic/system/framework/boot.art"
               " --host-prefix out/target/product/generic",
        formatter_class=argparse.RawTextHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # OAT command
    oat_parser = subparsers.add_parser('oat', help='Dump an .oat file.')
    oat_parser.add_argument('file', type=str, help='Path to the .oat file')
    oat_parser.add_argument('--host-prefix', help='Prefix for target paths inside the file')
    oat_parser.add_argument('--output', help='Write the report to this file')

    # IMAGE command
    image_parser = subparsers.add_parser('image', help='Dump an .art image file.')
    image_parser.add_argument('file', type=str, help='Path to the .art file')
    image_parser.add_argument('--boot-image', help='Boot image the file was compiled against')
    image_parser.add_argument('--host-prefix', help='Prefix for target paths inside the file')
    image_parser.add_argument('--output', help='Write the report to this file')

    args = parser.parse_args()

    if args.command == 'oat':
        analyze_oat(args.file, args.host_prefix, args.output)
    elif args.command == 'image':
        analyze_image(args.file, args.boot_image, args.host_prefix, args.output)

    print("\n--- Analysis complete. ---")


if __name__ == '__main__':
    try:
        main()
    except subprocess.CalledProcessError as e:
        print(f"An error occurred while running oatdump: {e}", file=sys.stderr)
        sys.exit(1)
