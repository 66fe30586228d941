#!/usr/bin/env python3
"""
Command line front end: convolve and pool one grayscale image and write
convolved / maxpooled / minpooled images.
"""

import argparse
import os
import sys

from .config import DEVICES, HEIGHT, SHARPEN, WIDTH, CoefficientTable, PipelineConfig
from .errors import DeviceResourceError, InputError
from .image_io import load_grayscale, save_results
from .pipeline import open_backend, run_pipeline

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_DEVICE_ERROR = 3
EXIT_VERIFY_FAILED = 4


def build_parser():
    parser = argparse.ArgumentParser(
        prog="imagekernels",
        description="3x3 convolution and 2x2 max/min pooling of a grayscale image with OpenCL")
    parser.add_argument("image", nargs="?", help="input image path")
    parser.add_argument("--coefficients", metavar="FILE",
                        help="3x3 filter weights as text (default: sharpen)")
    parser.add_argument("--device", choices=DEVICES, default="auto",
                        help="OpenCL device type, or 'host' for the Python engine")
    parser.add_argument("--width", type=int, default=WIDTH)
    parser.add_argument("--height", type=int, default=HEIGHT)
    parser.add_argument("--output-dir", default=".")
    parser.add_argument("--format", default="png", help="output file extension")
    parser.add_argument("--verify", action="store_true",
                        help="compare against the host engine")
    parser.add_argument("--benchmark", metavar="PLOT",
                        help="time each device and save a bar chart")
    parser.add_argument("--repeats", type=int, default=5)
    parser.add_argument("--list-devices", action="store_true")
    parser.add_argument("--quiet", action="store_true")
    return parser


def print_devices():
    from .device import list_devices

    devices = list_devices()
    if not devices:
        print("No OpenCL platforms found!")
        return
    for platform, info in devices:
        print(f"\nPlatform: {platform}")
        print(f"  Device: {info['name']} ({info['type']})")
        print(f"    Compute units:       {info['max_compute_units']}")
        print(f"    Max work-group size: {info['max_work_group_size']}")
        print(f"    Global memory:       {info['global_mem_size']:.2f} GB")
        print(f"    Constant buffer:     {info['max_constant_buffer_size']:.0f} KB")


def run(args, say):
    coefficients = SHARPEN
    if args.coefficients:
        coefficients = CoefficientTable.from_file(args.coefficients)
    config = PipelineConfig(width=args.width, height=args.height,
                            coefficients=coefficients, device=args.device)

    say("\n--- Loading Image ---")
    image = load_grayscale(args.image, config.width, config.height)
    say(f"Loaded image: {args.image} ({config.width}x{config.height})")

    say("\n--- Initializing Device ---")
    backend = open_backend(config.device, config.local_size)
    say(f"Using device: {backend.name}")

    say("\n--- Processing ---")
    result = run_pipeline(image, backend, config, verbose=not args.quiet)

    status = EXIT_OK
    if args.verify:
        say("\n--- Verification ---")
        reference = run_pipeline(image, open_backend("host", config.local_size), config)
        from .benchmark import compare_results

        diffs = compare_results(result, reference)
        for name, diff in diffs.items():
            say(f"{name:10} max difference: {diff}")
        if any(diffs.values()):
            print("Result: FAILED ✗", file=sys.stderr)
            status = EXIT_VERIFY_FAILED
        else:
            say("Result: PASSED ✓")

    say("\n--- Saving Results ---")
    for path in save_results(result, args.output_dir, args.format):
        say(f"✓ Saved: {path}")

    if args.benchmark:
        say("\n--- Benchmark ---")
        from .benchmark import benchmark_backends, plot_benchmark, use_headless_backend

        backends = {config.device: backend}
        if config.device != "host":
            backends["host"] = open_backend("host", config.local_size)
        timings = benchmark_backends(image, backends, config,
                                     repeats=args.repeats, verbose=not args.quiet)
        use_headless_backend()
        plot_benchmark(timings, args.benchmark)
        say(f"\nBenchmark plot saved as '{args.benchmark}'")

    say("\n" + "=" * 70)
    say("  Performance Summary")
    say("=" * 70)
    say(f"Image Size: {config.width}x{config.height} ({config.width * config.height:,} pixels)")
    say(f"\n{'Kernel':25} {'Time (ms)':>9}")
    say("-" * 70)
    for name, ms in result.timings.items():
        say(f"{name:25} {ms:9.3f}")
    say("-" * 70)
    say(f"{'Total':25} {sum(result.timings.values()):9.3f}")
    say("=" * 70)
    return status


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    say = (lambda *a, **k: None) if args.quiet else print

    if args.list_devices:
        print_devices()
        return EXIT_OK

    if not args.image:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: missing image path", file=sys.stderr)
        return EXIT_INPUT_ERROR

    say("=" * 70)
    say(f"  {os.path.basename(args.image)}: convolution + max/min pooling")
    say("=" * 70)

    try:
        return run(args, say)
    except InputError as e:
        print(f"\n❌ Input error: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except DeviceResourceError as e:
        print(f"\n❌ Device error: {e}", file=sys.stderr)
        return EXIT_DEVICE_ERROR


if __name__ == "__main__":
    sys.exit(main())
