#!/usr/bin/env python3
from __future__ import annotations

import os

from recipebox import create_app

app = create_app()


def main():
    port = int(os.getenv("PORT", "3000"))
    app.run(host=os.getenv("HOST", "127.0.0.1"), port=port)


if __name__ == "__main__":
    main()
