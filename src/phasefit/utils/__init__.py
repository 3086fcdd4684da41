from .functions import sphere, sphere_noisy, rosenbrock
