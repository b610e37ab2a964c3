import sys
import logging
import uvicorn
from app.core.config import settings

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO,
    handlers=[logging.StreamHandler(sys.stdout)]
)

def main():
    print(f"Starting Venue Match API on {settings.HOST}:{settings.PORT}...")
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, log_config=None)

if __name__ == '__main__':
    main()
