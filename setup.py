from setuptools import setup, find_packages

if __name__ =='__main__':
    setup(
        name='mpm2d',
        version='1.0',
        description='2D MLS-MPM simulation of elastic solids and viscous fluids',
        author='Krushang Gabani',
        author_email='krushang@buffalo.edu',
        keywords='Physics Simulation',
        packages=find_packages(include=['mpm2d', 'mpm2d.*']),
        python_requires='>=3.7',
        install_requires = [
            "numpy",
            "taichi",
            "pyyaml",
            "yacs"
        ],
        extras_require = {
            "test": ["pytest"]
        }

    )
