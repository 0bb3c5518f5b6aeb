import os

import uvicorn

from bqremote.backend.api.app import app


def main() -> None:
    # Cloud Run は PORT 環境変数で待ち受けポートを渡してくる
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))


if __name__ == "__main__":
    main()
