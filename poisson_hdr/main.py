from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from poisson_hdr import config
from poisson_hdr.routers.merge_images import router as merge_router


def create_app() -> FastAPI:
	config.configure_logging()
	app = FastAPI(title="Poisson HDR - Noise-Aware Merge API", version="0.1.0")

	# CORS (adjust origins in production)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=["*"],
		allow_credentials=False,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	app.include_router(merge_router)

	return app


app = create_app()


if __name__ == "__main__":
	# Local dev server: uvicorn poisson_hdr.main:app --reload
	import uvicorn

	uvicorn.run("poisson_hdr.main:app", host="0.0.0.0", port=8000, reload=True)
