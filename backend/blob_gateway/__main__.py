"""
Run the API server: python -m blob_gateway
"""
import uvicorn


def main():
    uvicorn.run("blob_gateway.main:create_app", factory=True, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
