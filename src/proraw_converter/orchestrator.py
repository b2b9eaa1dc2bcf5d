import os
import concurrent.futures
from typing import Optional

from . import core
from .config import SUPPORTED_RAW_EXTENSIONS, DEFAULT_MAX_VALUE
from .converter import RawConverter

# Each worker process owns one converter so its gamma cache is never shared.
_worker_converter: Optional[RawConverter] = None


def _init_worker(max_value):
    global _worker_converter
    _worker_converter = RawConverter(max_value=max_value)


def _process_in_worker(**kwargs):
    return core.process_image(converter=_worker_converter, **kwargs)


def find_raw_files(input_path):
    """Sorted list of supported RAW file names in a directory."""
    return sorted(
        f for f in os.listdir(input_path)
        if os.path.splitext(f)[1].lower() in SUPPORTED_RAW_EXTENSIONS
    )


def process_path(
    input_path,
    output_path,
    stretch_rate,
    color_mode,
    jobs,
    logger_func, # A function to handle logging, e.g., print or queue.put
    output_format: str = 'tif',
    apply_color: bool = True,
    apply_gamma: bool = True,
    raw_scale: bool = True,
    max_value: float = DEFAULT_MAX_VALUE,
    save_raw: bool = False,
    reference: bool = False,
    debug: bool = False,
    measure: bool = False,
):
    """
    Orchestrates the processing of a single file or a directory of files.
    Returns the number of files that failed in batch mode.
    """

    def log_message(msg):
        if hasattr(logger_func, 'put'):
            logger_func.put(msg)
        else:
            logger_func(msg)

    output_ext = f".{output_format}"
    options = dict(
        stretch_rate=stretch_rate,
        color_mode=color_mode,
        apply_color=apply_color,
        apply_gamma=apply_gamma,
        raw_scale=raw_scale,
        max_value=max_value,
        save_raw=save_raw,
        reference=reference,
        debug=debug,
        measure=measure,
    )

    # ============================
    #      Batch Processing
    # ============================
    if os.path.isdir(input_path):
        if not os.path.isdir(output_path):
            error_msg = "For batch processing, the output path must be a directory."
            log_message(f"❌ Error: {error_msg}")
            raise ValueError(error_msg)

        raw_files = find_raw_files(input_path)
        if not raw_files:
            log_message("⚠️ No supported RAW files found in the input directory.")
            raise ValueError("No RAW files found.")

        log_message(f"🔍 Found {len(raw_files)} RAW files for parallel processing.")

        failures = 0
        # Worker processes cannot call back into the parent, so only queues are forwarded.
        log_queue = logger_func if hasattr(logger_func, 'put') else None
        with concurrent.futures.ProcessPoolExecutor(
            max_workers=jobs,
            initializer=_init_worker,
            initargs=(max_value,),
        ) as executor:
            futures = {
                executor.submit(
                    _process_in_worker,
                    raw_path=os.path.join(input_path, filename),
                    output_path=os.path.join(output_path, f"{os.path.splitext(filename)[0]}{output_ext}"),
                    log_queue=log_queue,
                    **options,
                ): filename for filename in raw_files
            }

            for future in concurrent.futures.as_completed(futures):
                filename = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    failures += 1
                    log_msg = f"❌ Generated an exception: {exc}"
                    if hasattr(logger_func, 'put'):
                        logger_func.put({'id': filename, 'msg': log_msg, 'level': 'ERROR'})
                    else:
                        log_message(f"[{filename}] {log_msg}")

        log_message(f"\n🎉 Batch processing complete ({len(raw_files) - failures}/{len(raw_files)} succeeded).")
        return failures

    # ============================
    #    Single File Processing
    # ============================
    final_output_path = output_path
    if os.path.isdir(output_path):
        file_name, _ = os.path.splitext(os.path.basename(input_path))
        final_output_path = os.path.join(output_path, f"{file_name}{output_ext}")

    log_message("⚙️ Processing single file...")
    core.process_image(
        raw_path=input_path,
        output_path=final_output_path,
        log_queue=logger_func,
        **options,
    )
    log_message("\n🎉 Single file processing complete.")
    return 0
