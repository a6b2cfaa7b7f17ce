from __future__ import annotations

import sys
import tempfile
from pathlib import Path

import pandas as pd

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from smatch.cli import main


def run() -> int:
    with tempfile.TemporaryDirectory() as td:
        here = Path(td)
        master = here / "master.csv"
        source = here / "source.csv"
        pd.DataFrame(
            {"Kota": ["Surabaya", "Jakarta", "Bandung"], "Populasi": ["", "", ""]}
        ).to_csv(master, index=False)
        pd.DataFrame(
            {"Nama": ["Kota Surabaya", "DKI Jakarta", "Kab. Bandung"], "Jumlah": ["2874", "10562", "3623"]}
        ).to_csv(source, index=False)

        code = main(
            [
                "transfer",
                str(master),
                str(source),
                "--master-key",
                "Kota",
                "--source-key",
                "Nama",
                "--map",
                "Jumlah:Populasi",
                "--oracle",
                "fuzzy",
            ]
        )
        out_path = master.with_name("master.updated.csv")
        assert out_path.exists(), "Output file not written"
        df = pd.read_csv(out_path, dtype=str)
        assert df["Populasi"].notna().any(), "No values transferred"
        print("Smoke test passed. Wrote:", out_path)
        return code


if __name__ == "__main__":
    raise SystemExit(run())
