from fastapi import FastAPI
from sigflow.main import app as sigflow_app  # Import sigflow app

# Initialize the main FastAPI application
main_app = FastAPI()

# Expose every route of the descrambler app
for route in sigflow_app.routes:
    main_app.router.routes.append(route)

# Run the main app
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(main_app, host="0.0.0.0", port=7860)
