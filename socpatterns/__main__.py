from __future__ import annotations

from socpatterns.detect import main


if __name__ == "__main__":
    raise SystemExit(main())
