import click

from . import config, orchestrator


@click.command()
@click.argument("input_path", type=click.Path(exists=True))
@click.argument("output_path", type=click.Path())
@click.option(
    "--stretch-rate",
    "-a",
    type=click.FloatRange(0.0, 1.0),
    default=config.DEFAULT_STRETCH_RATE,
    show_default=True,
    help="Fraction of histogram stretching in [0, 1] (0.01 recommended). "
         "0 leaves brightness and contrast untouched, 1 produces a black image.",
)
@click.option(
    "--color-mode",
    type=click.Choice(config.COLOR_MODES, case_sensitive=False),
    default=config.DEFAULT_COLOR_MODE,
    show_default=True,
    help="camera: apply the camera-to-sRGB matrix directly. "
         "xyz: invert ColorMatrix2 to reach XYZ, then convert to sRGB.",
)
@click.option("--no-color", is_flag=True, help="Skip the color space transform.")
@click.option("--no-gamma", is_flag=True, help="Skip gamma correction (linear output).")
@click.option(
    "--raw-scale/--no-raw-scale",
    default=True,
    help="Shift ProRaw samples left by 3 bits into the 16-bit range. Enabled by default.",
)
@click.option(
    "--max-value",
    type=click.FloatRange(0.0, 65535.0, min_open=True),
    default=config.DEFAULT_MAX_VALUE,
    show_default=True,
    help="Normalization constant of the gamma curve.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(config.OUTPUT_FORMATS, case_sensitive=False),
    default=config.DEFAULT_OUTPUT_FORMAT,
    help="Output file format: 16-bit tif (default) or 8-bit png.",
)
@click.option("--save-raw", is_flag=True, help="Also save the undeveloped samples as an 8-bit PNG.")
@click.option("--reference", is_flag=True, help="Also save LibRaw's own sRGB rendition for comparison.")
@click.option(
    "--jobs",
    type=int,
    default=config.DEFAULT_JOBS,
    help="Number of concurrent jobs for batch processing. Default is 4.",
)
@click.option("--debug", "-d", is_flag=True, help="Log intermediate values.")
@click.option("--measure", "-m", is_flag=True, help="Log the run time of every stage.")
def main(input_path, output_path, stretch_rate, color_mode, no_color, no_gamma, raw_scale,
         max_value, output_format, save_raw, reference, jobs, debug, measure):
    """
    Converts Apple ProRaw / linear DNG file(s) to sRGB images.

    INPUT_PATH: Path to a single DNG file or a directory of DNGs.
    OUTPUT_PATH: Path to the output file or a directory for batch processing.
    """
    try:
        failures = orchestrator.process_path(
            input_path=input_path,
            output_path=output_path,
            stretch_rate=stretch_rate,
            color_mode=color_mode.lower(),
            jobs=jobs,
            logger_func=click.echo, # Use click.echo for robust Unicode support
            output_format=output_format.lower(),
            apply_color=not no_color,
            apply_gamma=not no_gamma,
            raw_scale=raw_scale,
            max_value=max_value,
            save_raw=save_raw,
            reference=reference,
            debug=debug,
            measure=measure,
        )
    except Exception as e:
        raise click.ClickException(f"A critical error occurred: {e}")

    if failures:
        raise click.ClickException(f"{failures} file(s) failed to convert.")


if __name__ == "__main__":
    main()
