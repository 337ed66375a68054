import os

from safemicro.core.loader import fetch_adult


def main() -> None:
    # Ensure data directory exists
    os.makedirs("data", exist_ok=True)

    # fnlwgt is kept: it is the census weight used for population frequencies
    df = fetch_adult()

    out_path = os.path.join("data", "adult.csv")
    df.to_csv(out_path, index=False)

    print(f"Saved dataset to {out_path}")
    print(f"Rows: {len(df)}, Columns: {len(df.columns)}")
    print("Final columns:", list(df.columns))


if __name__ == "__main__":
    main()
