import logging
from pathlib import Path

import networkx as nx

from raybush import Bush, RayCloud


def main():
    """
    Extract branch skeletons from all PLY ray clouds under data/cloud/ recursively.

    For each cloud, run the Bush pipeline for a couple of expected branch
    radii, print basic skeleton metrics, and write the tree base lists to
    data/bases/.

    Usage (no CLI):
        uv run scripts/run_bush.py
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    cloud_root = Path("data/cloud")
    ply_paths = sorted(cloud_root.rglob("*.ply")) if cloud_root.exists() else []
    if not ply_paths:
        print(f"No PLY ray clouds found under {cloud_root.resolve()}")
        return

    mid_radii = [0.1, 0.2]
    out_dir = Path("data/bases")
    out_dir.mkdir(parents=True, exist_ok=True)

    for ply_path in ply_paths:
        print(f"\n=== Cloud: {ply_path} ===")
        cloud = RayCloud.from_ply(ply_path)

        for mid_radius in mid_radii:
            print("\n--- Bush: mid_radius =", mid_radius, "---")
            bush = Bush(cloud, mid_radius=mid_radius, verbose=False)
            G = bush.to_networkx()

            trees = bush.trees()
            detached = len(bush.branches) - len(bush.connected())

            print(f"Branches: {len(bush.branches)} (candidates: {bush.num_candidates}, scored: {bush.num_scored})")
            print(f"Parent links: {G.number_of_edges()}")
            print(f"Trees: {len(trees)} (weakly connected components: {nx.number_weakly_connected_components(G)})")
            if detached:
                print(f"Branches not reached from any root: {detached}")

            if trees:
                sizes = ", ".join(f"root {r}: {len(ids)}" for r, ids in sorted(trees.items()))
                print(f"Branches per tree: {sizes}")

            out_path = out_dir / f"{ply_path.stem}_r{mid_radius:g}.txt"
            if bush.save(out_path):
                print(f"Tree bases written: {out_path}")


if __name__ == "__main__":
    main()
