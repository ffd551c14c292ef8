import os
import uvicorn


def main():
    uvicorn.run(
        "hubpanel.main:app",
        host=os.getenv("HUBPANEL_HOST", "0.0.0.0"),
        port=int(os.getenv("HUBPANEL_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    main()
