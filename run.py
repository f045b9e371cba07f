"""
Gaze System - Main Entry Point
Runs the live gaze estimator:
  1. Load configuration
  2. Build the pipeline (model, detector, orchestrator, camera)
  3. Open a pygame window the size of the display
  4. Redraw the gaze dot whenever the overlay asks for it
  5. Stop everything on window close, Ctrl+C or --duration
"""

import argparse
import logging
import signal
import sys
import time

import pygame as pg

from gaze_system.estimation.config import GazeConfig
from gaze_system.estimation.inference import ModelLoadError
from gaze_system.estimation.mean_store import MeanImageLoadError
from gaze_system.pipeline import GazePipeline

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger('gaze')

BACKGROUND = (20, 20, 20)
FPS = 60


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="On-device gaze estimation")
    parser.add_argument('--config', help="JSON file applied on top of the defaults")
    parser.add_argument('--camera', choices=('opencv', 'depthai'), default='opencv',
                        help="Preview source (default: opencv)")
    parser.add_argument('--duration', type=float, default=None,
                        help="Stop after this many seconds")
    parser.add_argument('--log-file', help="Also write DEBUG logs to this file")
    return parser.parse_args(argv)


def load_config(path) -> GazeConfig:
    config = GazeConfig.from_json(path) if path else GazeConfig()
    config.validate()
    return config


def main(argv=None):
    args = parse_args(argv)

    if args.log_file:
        fh = logging.FileHandler(args.log_file)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s'))
        logging.getLogger().addHandler(fh)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        logger.error(f"✗ Invalid configuration: {e}")
        sys.exit(2)

    pipeline = GazePipeline(config, camera_kind=args.camera)
    running = True

    def shutdown(signum, frame):
        nonlocal running
        logger.info("Shutdown signal received - stopping pipeline...")
        running = False

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    pg.init()
    try:
        window = pg.display.set_mode((config.display_width_px, config.display_height_px))
        pg.display.set_caption("Gaze")
        clock = pg.time.Clock()

        try:
            pipeline.start()
        except (ModelLoadError, MeanImageLoadError) as e:
            logger.error(f"✗ Cannot start without the gaze model assets: {e}")
            sys.exit(1)

        started = time.monotonic()
        window.fill(BACKGROUND)
        pg.display.flip()

        while running:
            for event in pg.event.get():
                if event.type == pg.QUIT:
                    running = False
                elif event.type == pg.KEYDOWN and event.key == pg.K_ESCAPE:
                    running = False

            if args.duration is not None and time.monotonic() - started >= args.duration:
                logger.info(f"Duration of {args.duration:.0f}s reached")
                running = False

            if pipeline.overlay.consume_repaint():
                window.fill(BACKGROUND)
                pipeline.overlay.draw(window)
                pg.display.flip()

            clock.tick(FPS)

        logger.info(f"Final status: {pipeline.get_status()}")

    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        raise

    finally:
        pipeline.stop()
        pg.quit()
        print("\n✓ Gaze session complete.")


if __name__ == '__main__':
    main()
