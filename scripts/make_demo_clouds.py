# Make demo ray clouds for a stem, a tree and a small forest and save them in data/cloud/demo

import logging
from pathlib import Path

from raybush import save_demo_clouds
from raybush.path import data_path


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    out_dir = data_path("cloud/demo")

    paths = save_demo_clouds(str(out_dir))

    print("Demo clouds saved:")
    for name, path in paths.items():
        print(f"  {name + ':':8s}{Path(path)}")


if __name__ == "__main__":
    main()
